"""
Main application: FastAPI server for the Deeprotection web dashboard.
"""

import asyncio
import os
from datetime import datetime, timezone
from typing import Dict, Optional
from contextlib import asynccontextmanager

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from dpweb.backend import BackendClient
from dpweb.dashboard import DashboardContext, StatusPoller
from dpweb.editor import RuleEditor
from dpweb.events import EventBroker, EventType
from dpweb.log_stream import LogStreamConsumer
from dpweb.notifications import NotificationQueue
from dpweb.rules_ui import rules_router


# Configuration from environment
BACKEND_URL = os.getenv("BACKEND_URL", "http://127.0.0.1:8080")
WEB_HOST = os.getenv("WEB_HOST", "127.0.0.1")
WEB_PORT = int(os.getenv("WEB_PORT", "8090"))
BACKEND_TIMEOUT_SECONDS = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "10"))
STATS_POLL_SECONDS = float(os.getenv("STATS_POLL_SECONDS", "5.0"))
LOG_BUFFER_LINES = int(os.getenv("LOG_BUFFER_LINES", "1000"))
NOTIFICATION_SECONDS = float(os.getenv("NOTIFICATION_SECONDS", "5.0"))
MAX_NOTIFICATIONS = int(os.getenv("MAX_NOTIFICATIONS", "50"))


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    backend_url: str
    timestamp: str


class SettingsUpdate(BaseModel):
    """Request model for the basic settings form."""
    language: Optional[str] = None
    disable: Optional[str] = None
    expire_hours: Optional[str] = None
    update: Optional[str] = None
    mode: Optional[str] = None
    web_ip: Optional[str] = None
    web_port: Optional[str] = None


class CommandRequest(BaseModel):
    """Request model for ad-hoc command execution."""
    command: str


router = APIRouter()


def get_dashboard(request: Request) -> DashboardContext:
    return request.app.state.dashboard


def backend_failure(request: Request) -> HTTPException:
    """502 carrying the backend's own error text."""
    return HTTPException(
        status_code=502,
        detail=get_dashboard(request).last_error or "Backend request failed"
    )


async def startup(app: FastAPI) -> None:
    """Load initial state and start the background tasks."""
    state = app.state
    await state.broker.emit(
        EventType.STEP,
        "application_startup",
        details={"backend_url": state.client.base_url}
    )

    await state.editor.load()
    await state.dashboard.refresh()
    await state.dashboard.load_languages()

    if state.start_background:
        state.tasks = [
            asyncio.create_task(state.log_consumer.run(state.client.stream_logs())),
            asyncio.create_task(state.poller.run()),
        ]


async def shutdown(app: FastAPI) -> None:
    """Graceful shutdown."""
    state = app.state
    await state.broker.emit(
        EventType.STEP,
        "application_shutdown",
        details={"message": "Graceful shutdown initiated"}
    )

    state.poller.stop()
    for task in state.tasks:
        task.cancel()
    await asyncio.gather(*state.tasks, return_exceptions=True)
    state.tasks = []

    await state.client.close()


def create_app(
    client: Optional[BackendClient] = None,
    start_background: bool = True,
    notifications: Optional[NotificationQueue] = None,
) -> FastAPI:
    """Build the dashboard app around a backend client."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan context manager."""
        await startup(app)
        yield
        await shutdown(app)

    app = FastAPI(
        title="Deeprotection Dashboard",
        description="Web dashboard for the Deeprotection protection service",
        version="1.0.0",
        lifespan=lifespan
    )

    client = client or BackendClient(BACKEND_URL, timeout=BACKEND_TIMEOUT_SECONDS)
    broker = EventBroker()
    notifications = notifications or NotificationQueue(
        lifetime=NOTIFICATION_SECONDS,
        max_entries=MAX_NOTIFICATIONS,
    )
    notifications.broker = broker
    dashboard = DashboardContext(client, notifications, broker)

    app.state.settings = {
        "log_buffer_lines": LOG_BUFFER_LINES,
        "notification_seconds": NOTIFICATION_SECONDS,
    }
    app.state.client = client
    app.state.notifications = notifications
    app.state.broker = broker
    app.state.dashboard = dashboard
    app.state.editor = RuleEditor(client, notifications, broker)
    app.state.log_consumer = LogStreamConsumer(notifications, broker, max_lines=LOG_BUFFER_LINES)
    app.state.poller = StatusPoller(dashboard, interval=STATS_POLL_SECONDS)
    app.state.start_background = start_background
    app.state.tasks = []

    app.include_router(rules_router)
    app.include_router(router)
    return app



@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check endpoint."""
    consumer = request.app.state.log_consumer
    return HealthResponse(
        status="healthy" if consumer.connected else "degraded",
        backend_url=request.app.state.client.base_url,
        timestamp=datetime.now(timezone.utc).isoformat()
    )


@router.get("/api/status")
async def get_status(request: Request):
    """Current status panel, including the last stats poll."""
    return get_dashboard(request).status.to_dict()


@router.get("/api/notifications")
async def get_notifications(request: Request):
    """Notifications that have not expired yet."""
    return [n.to_dict() for n in request.app.state.notifications.active()]


@router.get("/api/settings")
async def get_settings(request: Request):
    """Basic settings form values and the available languages."""
    dashboard = get_dashboard(request)
    return {"basic": dashboard.settings_form(), "languages": dashboard.languages}


@router.post("/api/settings")
async def save_settings(update: SettingsUpdate, request: Request):
    """Save the basic settings."""
    dashboard = get_dashboard(request)
    basic: Dict[str, str] = {k: v for k, v in update.model_dump().items() if v is not None}
    if not await dashboard.save_settings(basic):
        raise backend_failure(request)
    return {"status": "saved", "basic": dashboard.settings_form()}


@router.post("/actions/reload")
async def reload_service(request: Request):
    """Ask the backend to reload its configuration."""
    if not await get_dashboard(request).reload():
        raise backend_failure(request)
    return {"status": "reloaded"}


@router.post("/actions/restart")
async def restart_service(request: Request):
    """Ask the backend to restart the protection service."""
    if not await get_dashboard(request).restart():
        raise backend_failure(request)
    return {"status": "restarted"}


@router.post("/actions/command")
async def execute_command(command: CommandRequest, request: Request):
    """Run an ad-hoc command through the backend."""
    if not command.command.strip():
        raise HTTPException(status_code=400, detail="Command cannot be empty")
    output = await get_dashboard(request).execute(command.command)
    if output is None:
        raise backend_failure(request)
    return {"status": "executed", "output": output}


@router.get("/api/logs")
async def get_logs(request: Request):
    """Buffered log lines and stream state."""
    return request.app.state.log_consumer.snapshot()


@router.post("/actions/logs/{action}")
async def control_logs(action: str, request: Request):
    """Pause, resume, toggle or clear the log view."""
    consumer: LogStreamConsumer = request.app.state.log_consumer
    handlers = {
        "pause": consumer.pause,
        "resume": consumer.resume,
        "toggle": consumer.toggle,
        "clear": consumer.clear,
    }
    if action not in handlers:
        raise HTTPException(status_code=404, detail=f"Unknown log action: {action}")
    handlers[action]()
    await request.app.state.broker.emit(
        EventType.STATE_CHANGE,
        f"logs_{action}",
        details={"state": consumer.state.value}
    )
    return {"state": consumer.state.value, "label": consumer.label}


@router.get("/events")
async def events_stream(request: Request):
    """SSE stream of structured JSON events."""
    broker: EventBroker = request.app.state.broker

    async def event_generator():
        async for event in broker.subscribe():
            yield {
                "event": event.type.value,
                "data": event.to_json()
            }

    return EventSourceResponse(event_generator())


@router.get("/history")
async def get_event_history(request: Request, limit: int = 50):
    """Get recent event history."""
    events = await request.app.state.broker.get_history(limit)
    return [e.to_dict() for e in events]


# Create FastAPI app
app = create_app()


async def run_server():
    """Run the dashboard server."""
    config = uvicorn.Config(
        app,
        host=WEB_HOST,
        port=WEB_PORT,
        log_level="info",
        access_log=True
    )
    server = uvicorn.Server(config)
    await server.serve()


def main():
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
