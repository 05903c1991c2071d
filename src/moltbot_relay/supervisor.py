"""Process supervisor: start, list and watch processes inside the sandbox."""

from typing import Callable

from moltbot_relay.concurrency import PollResult, poll_until
from moltbot_relay.exceptions import LogRetrievalError
from moltbot_relay.observability import get_logger
from moltbot_relay.protocols.sandbox import (
    Process,
    ProcessLogs,
    ProcessStatus,
    SandboxBackend,
)

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_MS = 500


class ProcessSupervisor:
    """Observes and starts processes through a sandbox backend.

    The supervisor never stops or deletes processes; the sandbox owns them.
    Waits are bounded polls: they stand in for a readiness notification
    the sandbox does not provide and return the last observed snapshot
    when attempts run out.
    """

    def __init__(self, sandbox: SandboxBackend) -> None:
        """Initialize process supervisor.

        Args:
            sandbox: Backend providing process primitives
        """
        self.sandbox = sandbox

    async def start(self, command: str, env: dict[str, str] | None = None) -> Process:
        """Start a command.

        Returns:
            The new process in starting or running status

        Raises:
            SpawnError: If the sandbox rejects the command
        """
        process = await self.sandbox.start_process(command, env=env)
        logger.info(
            "Process started",
            context={"process_id": process.id, "command": command, "status": process.status.value},
        )
        return process

    async def list(self) -> list[Process]:
        """Current process snapshot, in no particular order."""
        return await self.sandbox.list_processes()

    async def find(self, predicate: Callable[[Process], bool]) -> Process | None:
        """Return the first process matching ``predicate``, or None."""
        for process in await self.list():
            if predicate(process):
                return process
        return None

    async def refresh(self, process: Process) -> Process:
        """Re-read a process's status."""
        return await self.sandbox.get_process(process.id)

    async def _poll(
        self,
        process: Process,
        done: Callable[[Process], bool],
        poll_interval_ms: int,
        max_attempts: int,
    ) -> PollResult[Process]:
        return await poll_until(
            lambda: self.refresh(process),
            done,
            initial=process,
            interval_seconds=poll_interval_ms / 1000,
            max_attempts=max_attempts,
        )

    async def await_settled(
        self,
        process: Process,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_attempts: int = 30,
    ) -> Process:
        """Wait until the process completes or fails.

        Returns the last snapshot without raising if it is still starting
        or running after ``max_attempts`` polls; check ``status``.
        """
        result = await self.await_settled_with_attempts(process, poll_interval_ms, max_attempts)
        return result.value

    async def await_settled_with_attempts(
        self,
        process: Process,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_attempts: int = 30,
    ) -> PollResult[Process]:
        """Like :meth:`await_settled` but also reports how many polls ran."""
        result = await self._poll(
            process, lambda p: p.status.is_settled, poll_interval_ms, max_attempts
        )
        if not result.satisfied:
            logger.debug(
                "Process still active after bounded wait",
                context={"process_id": process.id, "attempts": result.attempts},
            )
        return result

    async def await_started(
        self,
        process: Process,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_attempts: int = 30,
    ) -> Process:
        """Wait until the process leaves the starting state.

        Returns the last snapshot, possibly still starting, once
        ``max_attempts`` polls have been made.
        """
        result = await self._poll(
            process,
            lambda p: p.status != ProcessStatus.STARTING,
            poll_interval_ms,
            max_attempts,
        )
        return result.value

    async def logs(self, process: Process) -> ProcessLogs:
        """Captured output of a process.

        Raises:
            LogRetrievalError: If the sandbox cannot return logs
        """
        return await self.sandbox.get_logs(process.id)

    async def logs_or_empty(self, process: Process) -> ProcessLogs:
        """Captured output, or empty logs when retrieval fails."""
        try:
            return await self.logs(process)
        except LogRetrievalError as e:
            logger.warning(
                "Failed to retrieve process logs",
                context={"process_id": process.id},
                error=e,
            )
            return ProcessLogs()
