"""Remote sandbox backend.

Talks to a sandbox control API over HTTP for process management and
opens gateway sockets through the same service:

- POST /processes                 start a process
- GET  /processes                 list processes
- GET  /processes/{id}            read one process
- GET  /processes/{id}/logs       captured stdout/stderr
- GET  /ports/{port}/{path}       HTTP request to a port inside the sandbox
- WS   /ports/{port}/{path}       WebSocket to a port inside the sandbox

With a ``sandbox_id`` every path is prefixed by ``/sandboxes/{sandbox_id}``.
"""

from datetime import datetime
from typing import Any

import httpx

from moltbot_relay.exceptions import (
    LogRetrievalError,
    ProcessNotFoundError,
    SandboxError,
    SpawnError,
)
from moltbot_relay.protocols.sandbox import HttpResponse, Process, ProcessLogs, ProcessStatus
from moltbot_relay.relay.endpoints import WebSocketsEndpoint, connect_websocket


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        return str(data.get("error") or data.get("message") or data)
    return str(data)


def process_from_dict(data: dict[str, Any]) -> Process:
    """Build a Process from a control API payload."""
    return Process(
        id=str(data["id"]),
        command=data.get("command", ""),
        status=ProcessStatus(data.get("status", "starting")),
        start_time=_parse_time(data.get("startTime")),
        end_time=_parse_time(data.get("endTime")),
        exit_code=data.get("exitCode"),
    )


class RemoteSandbox:
    """Sandbox reached through an HTTP control API."""

    def __init__(
        self,
        base_url: str | None = None,
        ws_url: str | None = None,
        api_token: str | None = None,
        sandbox_id: str | None = None,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize remote sandbox backend.

        Args:
            base_url: Control API base URL
            ws_url: WebSocket base URL (derived from base_url if omitted)
            api_token: Bearer token for the control API
            sandbox_id: Sandbox to address, if the API hosts several
            timeout_seconds: Request and handshake timeout
            transport: Optional httpx transport (testing)
            **kwargs: Ignored (for compatibility with other backends)

        Raises:
            ValueError: If base_url is missing
        """
        if not base_url:
            raise ValueError("Remote sandbox requires base_url")

        self.base_url = base_url.rstrip("/")
        if ws_url:
            self.ws_url = ws_url.rstrip("/")
        else:
            self.ws_url = self.base_url.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
        self.api_token = api_token
        self.sandbox_id = sandbox_id
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def _path(self, path: str) -> str:
        if self.sandbox_id:
            return f"/sandboxes/{self.sandbox_id}{path}"
        return path

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    async def start_process(
        self,
        command: str,
        env: dict[str, str] | None = None,
    ) -> Process:
        payload: dict[str, Any] = {"command": command}
        if env:
            payload["env"] = env

        try:
            async with self._client() as client:
                response = await client.post(self._path("/processes"), json=payload)
        except httpx.HTTPError as e:
            raise SpawnError(f"Failed to start '{command}': {e}") from e

        if response.status_code not in (200, 201):
            raise SpawnError(f"Failed to start '{command}': {_error_message(response)}")
        return process_from_dict(response.json())

    async def list_processes(self) -> list[Process]:
        try:
            async with self._client() as client:
                response = await client.get(self._path("/processes"))
        except httpx.HTTPError as e:
            raise SandboxError(f"Failed to list processes: {e}") from e

        if response.status_code != 200:
            raise SandboxError(f"Failed to list processes: {_error_message(response)}")
        return [process_from_dict(p) for p in response.json().get("processes", [])]

    async def get_process(self, process_id: str) -> Process:
        try:
            async with self._client() as client:
                response = await client.get(self._path(f"/processes/{process_id}"))
        except httpx.HTTPError as e:
            raise SandboxError(f"Failed to read process {process_id}: {e}") from e

        if response.status_code == 404:
            raise ProcessNotFoundError(f"Process not found: {process_id}")
        if response.status_code != 200:
            raise SandboxError(f"Failed to read process {process_id}: {_error_message(response)}")
        return process_from_dict(response.json())

    async def get_logs(self, process_id: str) -> ProcessLogs:
        try:
            async with self._client() as client:
                response = await client.get(self._path(f"/processes/{process_id}/logs"))
        except httpx.HTTPError as e:
            raise LogRetrievalError(f"Failed to get logs for {process_id}: {e}") from e

        if response.status_code != 200:
            raise LogRetrievalError(
                f"Failed to get logs for {process_id}: {_error_message(response)}"
            )
        data = response.json()
        return ProcessLogs(stdout=data.get("stdout") or "", stderr=data.get("stderr") or "")

    async def ws_connect(
        self,
        port: int,
        path: str = "/",
        query: str = "",
        headers: list[tuple[str, str]] | None = None,
    ) -> WebSocketsEndpoint:
        url = f"{self.ws_url}{self._path(f'/ports/{port}')}/{path.lstrip('/')}"
        if query:
            url = f"{url}?{query}"
        all_headers = list(headers or [])
        if self.api_token:
            all_headers.append(("Authorization", f"Bearer {self.api_token}"))
        return await connect_websocket(url, headers=all_headers, open_timeout=self.timeout_seconds)

    async def fetch(self, port: int, path: str = "/") -> HttpResponse:
        url = f"{self._path(f'/ports/{port}')}/{path.lstrip('/')}"
        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise SandboxError(f"Failed to fetch port {port}{path}: {e}") from e
        return HttpResponse(
            status_code=response.status_code,
            headers={name.lower(): value for name, value in response.headers.items()},
            body=response.content,
        )
