import json

import httpx
import pytest

from dpweb.backend import BackendClient
from dpweb.notifications import NotificationQueue


class FakeBackend:
    """In-memory protection backend served through httpx.MockTransport."""

    def __init__(self):
        self.config = {
            "basic": {
                "language": "en_US",
                "disable": "false",
                "expire_hours": "24",
                "timestamp": "1700000000",
                "update": "enable",
                "mode": "Enforcing",
                "web_ip": "127.0.0.1",
                "web_port": "8080",
            },
            "protected_paths": ["/etc/passwd", "/root"],
            "command_rules": ["rm -rf / > echo blocked", "shutdown >"],
        }
        self.stats = {"protection_count": 7, "remaining_time": ""}
        self.languages = [{"code": "en_US", "name": "English"}]
        self.log_body = "event: log\ndata: first line\n\nevent: log\ndata: second line\n\n"
        # path -> (status, body) overriding the normal answer
        self.failures = {}
        self.requests = []

    def fail(self, method, path, status=500, body=None):
        self.respond(method, path, status, body)

    def respond(self, method, path, status, body):
        self.failures[(method, path)] = (status, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key in self.failures:
            status, body = self.failures[key]
            if body is None:
                return httpx.Response(status, text="internal error")
            return httpx.Response(status, json=body)

        if key == ("GET", "/api/config"):
            return httpx.Response(200, json=self.config)
        if key == ("POST", "/api/config"):
            update = json.loads(request.content)
            for name in ("protected_paths", "command_rules"):
                if name in update:
                    self.config[name] = update[name]
            if "basic" in update:
                self.config["basic"].update(update["basic"])
            return httpx.Response(200, json={"message": "Configuration updated successfully"})
        if key == ("GET", "/api/stats"):
            return httpx.Response(200, json=self.stats)
        if key == ("GET", "/api/languages"):
            return httpx.Response(200, json=self.languages)
        if key == ("POST", "/api/reload"):
            return httpx.Response(200, json={"message": "Configuration reloaded", "output": ""})
        if key == ("POST", "/api/restart"):
            return httpx.Response(200, json={"message": "Service restarted", "output": ""})
        if key == ("POST", "/api/command"):
            command = json.loads(request.content)["command"]
            return httpx.Response(200, json={"message": "Command executed", "output": f"ran {command}"})
        if key == ("GET", "/api/logs"):
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=self.log_body.encode(),
            )
        return httpx.Response(404, json={"error": "not found"})

    def sent(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(backend):
    return BackendClient("http://backend.test", transport=httpx.MockTransport(backend.handler))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifications(clock):
    return NotificationQueue(lifetime=5.0, max_entries=10, clock=clock)
