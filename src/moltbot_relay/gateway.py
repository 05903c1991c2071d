"""Gateway lifecycle management.

Keeps exactly one Moltbot gateway process running inside the sandbox.
Concurrent callers of ``ensure_running`` share a single in-flight start
so two clients connecting at once never spawn two gateways.
"""

from dataclasses import dataclass

from moltbot_relay.concurrency import SingleFlight
from moltbot_relay.config import GatewayConfig
from moltbot_relay.exceptions import GatewayStartError, SandboxError, SpawnError
from moltbot_relay.observability import Timer, emit_counter, emit_timer, get_logger
from moltbot_relay.protocols.sandbox import Process, ProcessLogs, ProcessStatus
from moltbot_relay.supervisor import ProcessSupervisor

logger = get_logger(__name__)

# Keep start failure details readable in a JSON response
MAX_DETAIL_LOG_CHARS = 2000


@dataclass(frozen=True)
class GatewayHandle:
    """A gateway process known to be running."""

    process: Process
    started: bool = False

    @property
    def process_id(self) -> str:
        return self.process.id


class GatewayLifecycleManager:
    """Guarantees a single running gateway process.

    Example:
        manager = GatewayLifecycleManager(supervisor, config.gateway)
        handle = await manager.ensure_running()
    """

    def __init__(self, supervisor: ProcessSupervisor, config: GatewayConfig) -> None:
        """Initialize gateway lifecycle manager.

        Args:
            supervisor: Process supervisor for the sandbox
            config: Gateway command, signatures and timing
        """
        self.supervisor = supervisor
        self.config = config
        self._single_flight = SingleFlight()

    @property
    def signature_key(self) -> str:
        """Key serializing start attempts for this gateway."""
        return "|".join(self.config.signatures) or self.config.command

    def matches(self, process: Process) -> bool:
        """Whether ``process`` is an instance of the gateway command."""
        signatures = self.config.signatures or [self.config.command]
        return any(signature in process.command for signature in signatures)

    async def find_existing(self) -> Process | None:
        """Find a live gateway process, preferring a running one."""
        candidates = [
            p for p in await self.supervisor.list()
            if self.matches(p) and p.status.is_alive
        ]
        for process in candidates:
            if process.status == ProcessStatus.RUNNING:
                return process
        return candidates[0] if candidates else None

    async def ensure_running(self) -> GatewayHandle:
        """Return a running gateway, starting one if needed.

        Raises:
            GatewayStartError: If the gateway does not reach running within
                the start timeout, or the sandbox cannot be queried
        """
        try:
            existing = await self.find_existing()
            if existing is not None and existing.status == ProcessStatus.RUNNING:
                return GatewayHandle(process=existing)

            logger.info("Gateway not ready, starting")
            return await self._single_flight.do(self.signature_key, self._start_once)
        except SandboxError as e:
            logger.error("Sandbox unavailable while ensuring gateway", error=e)
            emit_counter("gateway.start_failed", {"status": "sandbox_error"})
            raise GatewayStartError(f"Sandbox unavailable: {e}", details=str(e)) from e

    async def _start_once(self) -> GatewayHandle:
        """Start the gateway and wait for it; runs once per in-flight key."""
        # A previous flight may have finished between our check and the lock
        existing = await self.find_existing()
        if existing is not None and existing.status == ProcessStatus.RUNNING:
            return GatewayHandle(process=existing)

        with Timer() as timer:
            if existing is not None:
                logger.info(
                    "Waiting for starting gateway",
                    context={"process_id": existing.id},
                )
                process, started = existing, False
            else:
                process, started = await self._spawn(), True

            process = await self.supervisor.await_started(
                process,
                poll_interval_ms=self.config.poll_interval_ms,
                max_attempts=self.config.start_poll_attempts,
            )

        if process.status == ProcessStatus.RUNNING:
            logger.info(
                "Gateway running",
                context={"process_id": process.id},
                duration_ms=timer.duration_ms,
            )
            emit_timer("gateway.start", timer.duration_ms)
            return GatewayHandle(process=process, started=started)

        emit_counter("gateway.start_failed", {"status": process.status.value})
        logs = await self.supervisor.logs_or_empty(process)
        details = format_start_failure(process, logs, self.config.start_timeout_seconds)
        logger.error(
            "Gateway failed to start",
            context={"process_id": process.id, "status": process.status.value},
        )
        raise GatewayStartError(details, details=details)

    async def _spawn(self) -> Process:
        try:
            return await self.supervisor.start(self.config.command, env=self.config.env or None)
        except SpawnError as e:
            logger.error("Gateway spawn rejected", error=e)
            raise GatewayStartError(f"Failed to start gateway: {e}") from e


def format_start_failure(process: Process, logs: ProcessLogs, timeout_seconds: float) -> str:
    """Describe why a gateway process is not running."""
    if process.status == ProcessStatus.STARTING:
        summary = f"Gateway did not become ready within {timeout_seconds:g}s"
    else:
        summary = f"Gateway process {process.status.value}"
        if process.exit_code is not None:
            summary += f" with exit code {process.exit_code}"

    parts = [summary]
    if logs.stderr.strip():
        parts.append(f"stderr: {logs.stderr.strip()[-MAX_DETAIL_LOG_CHARS:]}")
    if logs.stdout.strip():
        parts.append(f"stdout: {logs.stdout.strip()[-MAX_DETAIL_LOG_CHARS:]}")
    return "\n".join(parts)
