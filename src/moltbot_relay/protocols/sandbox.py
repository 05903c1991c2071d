"""Sandbox protocol for the environment hosting the gateway process."""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from moltbot_relay.protocols.socket import Endpoint


class ProcessStatus(str, Enum):
    """Lifecycle status of a sandboxed process.

    Transitions only move forward: starting -> running -> completed/failed.
    A poll may observe running -> completed directly, or starting -> failed.
    """

    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_settled(self) -> bool:
        """True once the process has finished, successfully or not."""
        return self in (ProcessStatus.COMPLETED, ProcessStatus.FAILED)

    @property
    def is_alive(self) -> bool:
        """True while the process is starting or running."""
        return not self.is_settled


@dataclass(frozen=True)
class Process:
    """Snapshot of one process inside the sandbox."""

    id: str
    command: str
    status: ProcessStatus
    start_time: datetime | None = None
    end_time: datetime | None = None
    exit_code: int | None = None

    def with_status(self, status: ProcessStatus, **changes: object) -> "Process":
        """Return a copy with a new status."""
        return replace(self, status=status, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        """Serialize for JSON responses."""
        return {
            "id": self.id,
            "command": self.command,
            "status": self.status.value,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "exitCode": self.exit_code,
        }


@dataclass(frozen=True)
class ProcessLogs:
    """Captured output of a process."""

    stdout: str = ""
    stderr: str = ""


@dataclass(frozen=True)
class HttpResponse:
    """Plain HTTP response from a port inside the sandbox."""

    status_code: int
    headers: dict[str, str]
    body: bytes = b""

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@runtime_checkable
class SandboxBackend(Protocol):
    """Protocol for sandbox backends (local subprocesses, remote sandbox API)."""

    async def start_process(
        self,
        command: str,
        env: dict[str, str] | None = None,
    ) -> Process:
        """Start a process and return it in starting or running status.

        Raises:
            SpawnError: If the sandbox rejects the command
        """
        ...

    async def list_processes(self) -> list[Process]:
        """Return a snapshot of all known processes."""
        ...

    async def get_process(self, process_id: str) -> Process:
        """Re-read a single process.

        Raises:
            ProcessNotFoundError: If the process is unknown
        """
        ...

    async def get_logs(self, process_id: str) -> ProcessLogs:
        """Return captured stdout/stderr.

        Raises:
            LogRetrievalError: If logs cannot be retrieved
        """
        ...

    async def ws_connect(
        self,
        port: int,
        path: str = "/",
        query: str = "",
        headers: list[tuple[str, str]] | None = None,
    ) -> Endpoint:
        """Open a WebSocket to a port inside the sandbox.

        The returned endpoint is connected but not yet accepted.

        Raises:
            BackendHandshakeError: If the port answered with a plain HTTP response
        """
        ...

    async def fetch(self, port: int, path: str = "/") -> HttpResponse:
        """Send a GET request to a port inside the sandbox.

        Header names in the result are lowercase.

        Raises:
            SandboxError: If the port cannot be reached
        """
        ...
