"""
Async client for the protection backend's HTTP/SSE API.
"""

from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import httpx
from httpx_sse import SSEError, aconnect_sse


class BackendError(Exception):
    """A backend request failed (non-2xx answer or transport error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Prefer the backend's own {"error": ...} text over the fallback."""
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return fallback


class BackendClient:
    """Thin wrapper over httpx.AsyncClient for each backend endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        fallback: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.HTTPError as e:
            raise BackendError(f"{fallback}: {e}") from e

        if response.is_error:
            raise BackendError(_error_message(response, fallback), response.status_code)

        try:
            return response.json()
        except ValueError:
            return {}

    async def get_config(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/config", "Failed to fetch configuration")

    async def update_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Submit a partial config ({basic?, protected_paths?, command_rules?})."""
        return await self._request(
            "POST", "/api/config", "Failed to update configuration", payload=config
        )

    async def get_stats(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/stats", "Failed to fetch stats")

    async def get_languages(self) -> List[Dict[str, str]]:
        languages = await self._request("GET", "/api/languages", "Failed to fetch languages")
        return languages if isinstance(languages, list) else []

    async def reload(self) -> Dict[str, Any]:
        return await self._request("POST", "/api/reload", "Failed to reload service")

    async def restart(self) -> Dict[str, Any]:
        return await self._request("POST", "/api/restart", "Failed to restart service")

    async def execute_command(self, command: str) -> Dict[str, Any]:
        return await self._request(
            "POST", "/api/command", "Command execution failed", payload={"command": command}
        )

    async def stream_logs(self) -> AsyncGenerator[Tuple[str, str], None]:
        """
        Yield (event, data) pairs from the backend log stream.

        The stream has no read timeout and ends when the backend closes it.
        Reconnecting is left to the caller.
        """
        timeout = httpx.Timeout(self.timeout, read=None)
        try:
            async with aconnect_sse(
                self._client, "GET", "/api/logs", timeout=timeout
            ) as event_source:
                if event_source.response.is_error:
                    raise BackendError(
                        "Failed to open log stream", event_source.response.status_code
                    )
                async for sse in event_source.aiter_sse():
                    yield sse.event, sse.data
        except (httpx.HTTPError, SSEError) as e:
            raise BackendError(f"Log stream error: {e}") from e
