"""Local subprocess-based sandbox for development."""

import asyncio
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import httpx

from moltbot_relay.exceptions import (
    LogRetrievalError,
    ProcessNotFoundError,
    SandboxError,
    SpawnError,
)
from moltbot_relay.observability import get_logger
from moltbot_relay.protocols.sandbox import HttpResponse, Process, ProcessLogs, ProcessStatus
from moltbot_relay.relay.endpoints import WebSocketsEndpoint, connect_websocket

logger = get_logger(__name__)


@dataclass
class _LocalProcess:
    """Bookkeeping for one spawned subprocess."""

    snapshot: Process
    proc: asyncio.subprocess.Process
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    tasks: list[asyncio.Task[None]] = field(default_factory=list)


class LocalSandbox:
    """Runs gateway and CLI processes as local subprocesses.

    WARNING: NOT for production use. Provides no isolation.
    """

    def __init__(
        self,
        shell: str = "/bin/sh",
        gateway_host: str = "127.0.0.1",
        timeout_seconds: float = 30.0,
        max_settled_processes: int = 100,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize local sandbox.

        Args:
            shell: Shell used to run commands
            gateway_host: Host where sandboxed ports are reachable
            timeout_seconds: WebSocket handshake and HTTP request timeout
            max_settled_processes: Finished processes kept for inspection;
                the oldest are forgotten first
            transport: Optional httpx transport (testing)
            **kwargs: Ignored (for compatibility with other backends)
        """
        self.shell = shell
        self.gateway_host = gateway_host
        self.timeout_seconds = timeout_seconds
        self.max_settled_processes = max_settled_processes
        self._transport = transport
        self._processes: dict[str, _LocalProcess] = {}

    async def start_process(
        self,
        command: str,
        env: dict[str, str] | None = None,
    ) -> Process:
        """Start a shell command."""
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **(env or {})},
                executable=self.shell,
            )
        except OSError as e:
            raise SpawnError(f"Failed to start '{command}': {e}") from e

        self._prune()
        process_id = f"proc_{uuid4().hex[:12]}"
        entry = _LocalProcess(
            snapshot=Process(
                id=process_id,
                command=command,
                status=ProcessStatus.RUNNING,
                start_time=datetime.now(timezone.utc),
            ),
            proc=proc,
        )
        self._processes[process_id] = entry
        entry.tasks = [
            asyncio.create_task(self._capture(proc.stdout, entry.stdout)),
            asyncio.create_task(self._capture(proc.stderr, entry.stderr)),
        ]
        entry.tasks.append(asyncio.create_task(self._watch(entry)))
        return entry.snapshot

    async def _capture(
        self,
        stream: asyncio.StreamReader | None,
        sink: list[str],
    ) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            sink.append(chunk.decode(errors="replace"))

    async def _watch(self, entry: _LocalProcess) -> None:
        returncode = await entry.proc.wait()
        # Let the readers drain what the process wrote before exiting
        await asyncio.gather(*entry.tasks[:2], return_exceptions=True)
        status = ProcessStatus.COMPLETED if returncode == 0 else ProcessStatus.FAILED
        entry.snapshot = entry.snapshot.with_status(
            status,
            end_time=datetime.now(timezone.utc),
            exit_code=returncode,
        )
        logger.info(
            "Process exited",
            context={"process_id": entry.snapshot.id, "exit_code": returncode},
        )

    def _prune(self) -> None:
        # Dict order is start order, so the oldest settled entries go first
        settled = [
            pid for pid, entry in self._processes.items() if entry.snapshot.status.is_settled
        ]
        for process_id in settled[: max(0, len(settled) - self.max_settled_processes)]:
            del self._processes[process_id]

    def _entry(self, process_id: str) -> _LocalProcess:
        entry = self._processes.get(process_id)
        if entry is None:
            raise ProcessNotFoundError(f"Process not found: {process_id}")
        return entry

    async def list_processes(self) -> list[Process]:
        return [entry.snapshot for entry in self._processes.values()]

    async def get_process(self, process_id: str) -> Process:
        return self._entry(process_id).snapshot

    async def get_logs(self, process_id: str) -> ProcessLogs:
        try:
            entry = self._entry(process_id)
        except ProcessNotFoundError as e:
            raise LogRetrievalError(str(e)) from e
        return ProcessLogs(stdout="".join(entry.stdout), stderr="".join(entry.stderr))

    async def ws_connect(
        self,
        port: int,
        path: str = "/",
        query: str = "",
        headers: list[tuple[str, str]] | None = None,
    ) -> WebSocketsEndpoint:
        url = f"ws://{self.gateway_host}:{port}{path}"
        if query:
            url = f"{url}?{query}"
        return await connect_websocket(url, headers=headers, open_timeout=self.timeout_seconds)

    async def fetch(self, port: int, path: str = "/") -> HttpResponse:
        url = f"http://{self.gateway_host}:{port}/{path.lstrip('/')}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise SandboxError(f"Failed to fetch {url}: {e}") from e
        return HttpResponse(
            status_code=response.status_code,
            headers={name.lower(): value for name, value in response.headers.items()},
            body=response.content,
        )

    async def shutdown(self) -> None:
        """Terminate every process still running."""
        for entry in self._processes.values():
            if entry.proc.returncode is None:
                entry.proc.terminate()
        for entry in self._processes.values():
            await asyncio.gather(*entry.tasks, return_exceptions=True)
