"""
Web UI for the dashboard and the rule editor.

The page renders JSON snapshots of the server-side tables and posts operator
actions back; rows are never read back out of the markup.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from dpweb.editor import RuleEditor
from dpweb.rules import RuleKind, RuleTable


KIND_SLUGS = {
    "paths": RuleKind.PATH,
    "commands": RuleKind.COMMAND,
}


class DraftUpdate(BaseModel):
    """Request model for editing the draft row of a table."""
    path: Optional[str] = None
    original: Optional[str] = None
    replacement: Optional[str] = None


rules_router = APIRouter()


def get_editor(request: Request) -> RuleEditor:
    return request.app.state.editor


def get_table(request: Request, kind: str) -> RuleTable:
    if kind not in KIND_SLUGS:
        raise HTTPException(status_code=404, detail=f"Unknown rule table: {kind}")
    return get_editor(request).table(KIND_SLUGS[kind])


def apply_draft_update(table: RuleTable, update: DraftUpdate) -> None:
    draft = table.draft
    if draft is None:
        raise HTTPException(status_code=409, detail="Table has no draft row")
    fields = {k: v for k, v in update.model_dump().items() if v is not None}
    if fields and not table.edit(draft, **fields):
        raise HTTPException(status_code=400, detail="Invalid fields for this table")


HTML_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta name="theme-color" content="#1a1a2e">
    <title>Deeprotection</title>
    <style>
        * {
            box-sizing: border-box;
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
        }
        body {
            margin: 0;
            padding: 20px;
            background: #1a1a2e;
            color: #eee;
            min-height: 100vh;
        }
        nav {
            display: flex;
            gap: 10px;
            max-width: 1400px;
            margin: 0 auto 20px;
        }
        nav a {
            color: #aaa;
            text-decoration: none;
            padding: 8px 14px;
            border-radius: 4px;
        }
        nav a.active {
            background: #16213e;
            color: #00d4ff;
        }
        .page {
            display: none;
            max-width: 1400px;
            margin: 0 auto;
        }
        .page.active {
            display: block;
        }
        .panel {
            background: #16213e;
            border-radius: 8px;
            padding: 20px;
            margin-bottom: 20px;
        }
        h2 {
            color: #00d4ff;
            margin-top: 0;
            border-bottom: 2px solid #00d4ff;
            padding-bottom: 10px;
            font-size: 1.3em;
        }
        .status-grid {
            display: grid;
            grid-template-columns: 200px 1fr;
            gap: 8px;
        }
        #status-indicator {
            display: inline-block;
            width: 10px;
            height: 10px;
            border-radius: 50%;
            background: #ff4757;
        }
        #status-indicator.active {
            background: #27ae60;
        }
        table {
            width: 100%;
            border-collapse: collapse;
        }
        td, th {
            padding: 6px;
            text-align: left;
            border-bottom: 1px solid #333;
        }
        input[type="text"], select {
            width: 100%;
            padding: 8px;
            border: 1px solid #333;
            border-radius: 4px;
            background: #0f0f23;
            color: #eee;
        }
        input.invalid {
            border-color: #ff4757;
        }
        button {
            padding: 8px 16px;
            border: none;
            border-radius: 4px;
            cursor: pointer;
            font-size: 0.9em;
        }
        .btn-primary {
            background: #00d4ff;
            color: #000;
        }
        .btn-danger {
            background: #ff4757;
            color: #fff;
        }
        pre {
            background: #0f0f23;
            padding: 12px;
            border-radius: 4px;
            max-height: 60vh;
            overflow-y: auto;
            white-space: pre-wrap;
        }
        #toasts {
            position: fixed;
            right: 20px;
            bottom: 20px;
            display: flex;
            flex-direction: column;
            gap: 8px;
        }
        .error-banner {
            border-left: 4px solid #ff4757;
            color: #ff4757;
        }
        .toast {
            background: #0f0f23;
            border-left: 4px solid #00d4ff;
            padding: 10px 14px;
            border-radius: 4px;
            opacity: 0;
            transition: opacity 0.3s;
            max-width: 420px;
        }
        .toast.show {
            opacity: 1;
        }
        .toast.error {
            border-left-color: #ff4757;
        }
        .toast.success {
            border-left-color: #27ae60;
        }
    </style>
</head>
<body>
    <nav>
        <a href="#" data-page="dashboard" class="active">Dashboard</a>
        <a href="#" data-page="config">Configuration</a>
        <a href="#" data-page="rules">Rules</a>
        <a href="#" data-page="logs">Logs</a>
        <a href="#" data-page="tools">Tools</a>
    </nav>

    <section id="dashboard" class="page active">
        <div class="panel">
            <h2><span id="status-indicator"></span> <span id="status-text">Loading...</span></h2>
            <div class="status-grid">
                <div>Protection</div><div id="protection-status"></div>
                <div>Disable window</div><div id="expiration-status"></div>
                <div>Protections</div><div id="protection-count"></div>
                <div>Last updated</div><div id="last-updated"></div>
                <div>Auto update</div><div id="update-mode"></div>
                <div>Mode</div><div id="protection-mode"></div>
            </div>
            <p>
                <button class="btn-primary" id="reload-btn">Reload</button>
                <button class="btn-danger" id="restart-btn">Restart</button>
            </p>
        </div>
    </section>

    <section id="config" class="page">
        <div class="panel">
            <h2>Configuration</h2>
            <div class="status-grid" id="settings-form"></div>
            <p><button class="btn-primary" id="save-config">Save</button></p>
        </div>
    </section>

    <section id="rules" class="page">
        <div class="panel error-banner" id="rules-error" hidden></div>
        <div class="panel">
            <h2>Protected Paths</h2>
            <table id="paths-table"></table>
        </div>
        <div class="panel">
            <h2>Command Rules</h2>
            <table id="commands-table"></table>
        </div>
        <p>
            <button class="btn-primary" id="save-rules">Save Rules</button>
            <button class="btn-primary" id="load-rules">Reload Rules</button>
        </p>
    </section>

    <section id="logs" class="page">
        <div class="panel">
            <h2>Logs</h2>
            <p>
                <button class="btn-primary" id="pause-logs">Pause</button>
                <button class="btn-danger" id="clear-logs">Clear</button>
            </p>
            <pre id="log-output"></pre>
        </div>
    </section>

    <section id="tools" class="page">
        <div class="panel">
            <h2>Tools</h2>
            <input type="text" id="command" placeholder="Command">
            <p><button class="btn-primary" id="execute-btn">Execute</button></p>
            <pre id="command-output"></pre>
        </div>
    </section>

    <div id="toasts"></div>

    <script>
        const MAX_LOG_LINES = __MAX_LOG_LINES__;
        const TOAST_MS = __TOAST_MS__;
        const SETTINGS = ['language', 'disable', 'expire_hours', 'update', 'mode', 'web_ip', 'web_port'];

        function escapeHtml(text) {
            const div = document.createElement('div');
            div.textContent = text == null ? '' : text;
            return div.innerHTML;
        }

        function showToast(text, level = 'info') {
            const toast = document.createElement('div');
            toast.className = 'toast ' + level;
            toast.textContent = text;
            document.getElementById('toasts').appendChild(toast);
            requestAnimationFrame(() => toast.classList.add('show'));
            setTimeout(() => {
                toast.classList.remove('show');
                setTimeout(() => toast.remove(), 300);
            }, TOAST_MS);
        }

        async function api(method, url, body) {
            const options = { method, headers: { 'Content-Type': 'application/json' } };
            if (body !== undefined) options.body = JSON.stringify(body);
            const response = await fetch(url, options);
            const data = await response.json().catch(() => ({}));
            if (!response.ok) {
                const error = new Error(data.detail || data.error || 'Request failed');
                // 502 means the backend failed and the server already queued a notification
                error.announced = response.status === 502;
                throw error;
            }
            return data;
        }

        function reportError(e) {
            if (!e.announced) showToast(e.message, 'error');
        }

        async function showPendingNotifications() {
            try {
                (await api('GET', '/api/notifications')).forEach(n => showToast(n.text, n.level));
            } catch (e) { reportError(e); }
        }

        document.querySelectorAll('nav a').forEach(link => {
            link.addEventListener('click', e => {
                e.preventDefault();
                document.querySelectorAll('.page').forEach(p => p.classList.remove('active'));
                document.querySelectorAll('nav a').forEach(a => a.classList.remove('active'));
                link.classList.add('active');
                document.getElementById(link.dataset.page).classList.add('active');
                if (link.dataset.page === 'rules') loadRules();
            });
        });

        // Dashboard
        function renderStatus(s) {
            document.getElementById('status-indicator').className = s.indicator;
            document.getElementById('status-text').textContent = s.text;
            document.getElementById('protection-status').textContent = s.protection;
            document.getElementById('last-updated').textContent = s.last_updated;
            document.getElementById('update-mode').textContent = s.update_mode;
            document.getElementById('protection-mode').textContent = s.protection_mode;
            document.getElementById('protection-count').textContent = s.protection_count ?? '';
            const exp = document.getElementById('expiration-status');
            exp.textContent = s.expiration;
            exp.style.color = s.expiration_level === 'disabled' ? '#e74c3c' : '#27ae60';
        }

        async function loadStatus() {
            try { renderStatus(await api('GET', '/api/status')); } catch (e) { reportError(e); }
        }

        async function runAction(url, body) {
            try {
                const data = await api('POST', url, body);
                loadStatus();
                return data;
            } catch (e) {
                reportError(e);
                return null;
            }
        }

        document.getElementById('reload-btn').onclick = () => runAction('/actions/reload');
        document.getElementById('restart-btn').onclick = () => runAction('/actions/restart');

        // Configuration
        async function loadSettings() {
            const data = await api('GET', '/api/settings');
            const options = data.languages.map(l =>
                `<option value="${escapeHtml(l.code)}">${escapeHtml(l.name)}</option>`).join('');
            document.getElementById('settings-form').innerHTML = SETTINGS.map(key => key === 'language'
                ? `<label>${key}</label><select id="set-${key}">${options}</select>`
                : `<label>${key}</label><input type="text" id="set-${key}" value="${escapeHtml(data.basic[key])}">`
            ).join('');
            document.getElementById('set-language').value = data.basic.language;
        }

        document.getElementById('save-config').onclick = async () => {
            const basic = {};
            SETTINGS.forEach(key => { basic[key] = document.getElementById('set-' + key).value; });
            await runAction('/api/settings', basic);
        };

        // Rules
        const COLUMNS = { paths: ['path'], commands: ['original', 'replacement'] };

        function draftValues(slug) {
            const values = {};
            document.querySelectorAll(`#${slug}-table input[data-field]`).forEach(input => {
                values[input.dataset.field] = input.value;
            });
            return values;
        }

        function renderTable(slug, snapshot, keepDraft) {
            const columns = COLUMNS[slug];
            const typed = keepDraft ? draftValues(slug) : {};
            const rows = snapshot.rows.map(row => {
                const cells = columns.map(col => row.state === 'draft'
                    ? `<td><input type="text" data-field="${col}" value="${escapeHtml(row[col] || typed[col])}"
                         class="${row.error === col ? 'invalid' : ''}" placeholder="${col}"></td>`
                    : `<td>${escapeHtml(row[col])}</td>`).join('');
                const action = row.state === 'draft'
                    ? `<button class="btn-primary" onclick="confirmDraft('${slug}', this)">Add</button>`
                    : `<button class="btn-danger" onclick="removeRow('${slug}', '${row.key}')">&times;</button>`;
                return `<tr><td>${row.ordinal}</td>${cells}<td>${action}</td></tr>`;
            }).join('');
            const head = `<tr><th>#</th>${columns.map(c => `<th>${c}</th>`).join('')}<th></th></tr>`;
            document.getElementById(slug + '-table').innerHTML = head + rows;
        }

        function renderRules(data, keepDraft = false) {
            renderTable('paths', data.paths, keepDraft);
            renderTable('commands', data.commands, keepDraft);
            const banner = document.getElementById('rules-error');
            const message = data.load_error
                ? 'Error loading configuration: ' + data.load_error
                : data.save_error;
            banner.textContent = message || '';
            banner.hidden = !message;
        }

        // Opening the rules page discards unsaved edits and fetches the backend's rules
        async function loadRules() {
            try { renderRules(await api('POST', '/api/rules/load')); } catch (e) { reportError(e); }
        }

        async function refreshRules() {
            try { renderRules(await api('GET', '/api/rules')); } catch (e) { reportError(e); }
        }

        async function confirmDraft(slug, button) {
            const body = {};
            button.closest('tr').querySelectorAll('input[data-field]').forEach(input => {
                body[input.dataset.field] = input.value;
            });
            try { renderRules(await api('POST', `/api/rules/${slug}/confirm`, body)); }
            catch (e) { reportError(e); }
        }

        async function removeRow(slug, key) {
            try { renderRules(await api('DELETE', `/api/rules/${slug}/${key}`)); }
            catch (e) { reportError(e); }
        }

        document.getElementById('save-rules').onclick = async () => {
            try { renderRules(await api('POST', '/api/rules/save')); }
            catch (e) {
                reportError(e);
                refreshRules();
            }
        };
        document.getElementById('load-rules').onclick = loadRules;

        // Logs
        const logOutput = document.getElementById('log-output');
        const logLines = [];

        function renderLogs() {
            logOutput.textContent = logLines.join('\\n');
            logOutput.scrollTop = logOutput.scrollHeight;
        }

        function appendLog(line) {
            logLines.push(line);
            if (logLines.length > MAX_LOG_LINES) logLines.splice(0, logLines.length - MAX_LOG_LINES);
            renderLogs();
        }

        async function loadLogs() {
            const data = await api('GET', '/api/logs');
            logLines.splice(0, logLines.length, ...data.lines);
            document.getElementById('pause-logs').textContent = data.label;
            renderLogs();
        }

        document.getElementById('pause-logs').onclick = async () => {
            const data = await api('POST', '/actions/logs/toggle');
            document.getElementById('pause-logs').textContent = data.label;
        };

        document.getElementById('clear-logs').onclick = async () => {
            await api('POST', '/actions/logs/clear');
            logLines.length = 0;
            renderLogs();
        };

        // Tools
        const commandInput = document.getElementById('command');
        document.getElementById('execute-btn').onclick = async () => {
            if (!commandInput.value.trim()) return;
            const data = await runAction('/actions/command', { command: commandInput.value });
            if (data) document.getElementById('command-output').textContent = data.output;
        };
        commandInput.addEventListener('keypress', e => {
            if (e.key === 'Enter') document.getElementById('execute-btn').click();
        });

        // Live events
        const eventSource = new EventSource('/events');
        eventSource.addEventListener('log', e => appendLog(JSON.parse(e.data).details.line));
        eventSource.addEventListener('notification', e => {
            const entry = JSON.parse(e.data).details;
            showToast(entry.text, entry.level);
        });
        eventSource.addEventListener('stats', e => renderStatus(JSON.parse(e.data).details));
        eventSource.addEventListener('status', e => renderStatus(JSON.parse(e.data).details));
        eventSource.addEventListener('rules', e => renderRules(JSON.parse(e.data).details, true));
        // Named "error" events from the server share the handler with connection errors
        eventSource.onerror = e => {
            if (e.data) {
                appendLog('[error] ' + JSON.parse(e.data).details.message);
                return;
            }
            console.error('Dashboard event stream error');
            eventSource.close();
        };

        showPendingNotifications();
        loadStatus();
        loadSettings().catch(reportError);
        loadRules();
        loadLogs().catch(reportError);
    </script>
</body>
</html>
"""


def render_page(max_log_lines: int, toast_seconds: float) -> str:
    return (
        HTML_TEMPLATE
        .replace("__MAX_LOG_LINES__", str(max_log_lines))
        .replace("__TOAST_MS__", str(int(toast_seconds * 1000)))
    )


@rules_router.get("/", response_class=HTMLResponse)
async def dashboard_ui(request: Request):
    """Serve the dashboard UI."""
    settings = request.app.state.settings
    return render_page(settings["log_buffer_lines"], settings["notification_seconds"])


@rules_router.get("/api/rules")
async def get_rules(request: Request):
    """Get both rule tables."""
    return get_editor(request).snapshot()


@rules_router.post("/api/rules/load")
async def load_rules(request: Request):
    """Discard in-memory edits and reload the tables from the backend."""
    editor = get_editor(request)
    await editor.load()
    return editor.snapshot()


@rules_router.post("/api/rules/save")
async def save_rules(request: Request):
    """Save both tables to the backend."""
    editor = get_editor(request)
    if not await editor.save():
        raise HTTPException(status_code=502, detail=editor.save_error or "Failed to save rules")
    return editor.snapshot()


@rules_router.patch("/api/rules/{kind}/draft")
async def edit_draft(kind: str, update: DraftUpdate, request: Request):
    """Edit the draft row of a table."""
    table = get_table(request, kind)
    apply_draft_update(table, update)
    return get_editor(request).snapshot()


@rules_router.post("/api/rules/{kind}/confirm")
async def confirm_draft(kind: str, request: Request, update: Optional[DraftUpdate] = None):
    """
    Confirm the draft row, optionally setting its fields first.

    A blank required field leaves the row a draft with its error flag set;
    the response is still 200 so the page can show the flag.
    """
    table = get_table(request, kind)
    if update is not None:
        apply_draft_update(table, update)
    table.confirm(table.draft)
    return get_editor(request).snapshot()


@rules_router.delete("/api/rules/{kind}/{key}")
async def remove_rule(kind: str, key: str, request: Request):
    """Remove a confirmed row by key. Removing a row twice is a no-op."""
    table = get_table(request, kind)
    row = table.find(key)
    if row is not None and not table.remove(row):
        raise HTTPException(status_code=409, detail="The draft row cannot be removed")
    return get_editor(request).snapshot()
