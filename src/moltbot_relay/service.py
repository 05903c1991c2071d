"""RelayService: wires the sandbox, gateway manager and relay proxy together."""

from pathlib import Path
from typing import Any

from moltbot_relay.config import Config
from moltbot_relay.gateway import GatewayLifecycleManager
from moltbot_relay.observability import configure_logging, get_logger
from moltbot_relay.plugins import create_sandbox_backend
from moltbot_relay.protocols import SandboxBackend
from moltbot_relay.relay.proxy import RelayProxy
from moltbot_relay.supervisor import ProcessSupervisor

logger = get_logger(__name__)


class RelayService:
    """One relay deployment: a sandbox, its gateway and the WebSocket relay.

    The service owns the single GatewayLifecycleManager, so every
    connection served by it shares one ensure-running section.

    Example usage:
        service = RelayService.from_config("relay.yaml")
        service.serve(port=8080)
    """

    def __init__(self, config: Config, sandbox: SandboxBackend | None = None) -> None:
        """Initialize the service.

        Args:
            config: Relay configuration
            sandbox: Sandbox backend; created from config when omitted
        """
        self.config = config
        self.sandbox = sandbox or self._create_sandbox()
        self.supervisor = ProcessSupervisor(self.sandbox)
        self.gateway = GatewayLifecycleManager(self.supervisor, config.gateway)
        self.proxy = RelayProxy(self.sandbox, self.gateway, port=config.gateway.port)

    @classmethod
    def from_config(cls, path: str | Path) -> "RelayService":
        """Create a service from a YAML or JSON configuration file."""
        return cls(Config.from_file(path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "RelayService":
        """Create a service from a configuration dictionary."""
        return cls(Config.from_dict(config_dict))

    def _create_sandbox(self) -> SandboxBackend:
        sandbox_config = self.config.sandbox
        logger.info("Creating sandbox backend", context={"backend": sandbox_config.backend})
        return create_sandbox_backend(
            sandbox_config.backend,
            base_url=sandbox_config.base_url,
            ws_url=sandbox_config.ws_url,
            api_token=sandbox_config.api_token,
            sandbox_id=sandbox_config.sandbox_id,
            timeout_seconds=sandbox_config.timeout_seconds,
            gateway_host=sandbox_config.gateway_host,
            shell=sandbox_config.shell,
            max_settled_processes=sandbox_config.max_settled_processes,
        )

    async def shutdown(self) -> None:
        """Release sandbox resources owned by this process."""
        shutdown = getattr(self.sandbox, "shutdown", None)
        if shutdown is not None:
            logger.info("Shutting down sandbox backend")
            await shutdown()

    def serve(
        self,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        """Start the HTTP server.

        Args:
            host: Host to bind to (defaults to config value)
            port: Port to bind to (defaults to config value)
        """
        import uvicorn

        from moltbot_relay.server.app import create_app

        configure_logging(self.config.logging.level, self.config.logging.format)
        app = create_app(self)
        uvicorn.run(
            app,
            host=host or self.config.server.host,
            port=port or self.config.server.port,
            log_config=None,
        )
