"""Debug routes for inspecting sandbox state.

Mounted only when ``debug.enabled`` is set. They expose process lists,
logs and arbitrary command execution, so deployments must put them
behind their own access control.
"""

import json
from typing import TYPE_CHECKING, Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from moltbot_relay.exceptions import LogRetrievalError, RelayError
from moltbot_relay.observability import get_logger
from moltbot_relay.protocols.sandbox import Process, ProcessStatus

if TYPE_CHECKING:
    from moltbot_relay.service import RelayService

logger = get_logger(__name__)

CLI_POLL_INTERVAL_MS = 500
VERSION_WAIT_ATTEMPTS = 10
CONTAINER_CONFIG_POLL_INTERVAL_MS = 200
CONTAINER_CONFIG_WAIT_ATTEMPTS = 10

# Gateway environment variables reported as present or absent, never by value
REPORTED_SECRETS = {
    "has_anthropic_key": "ANTHROPIC_API_KEY",
    "has_openai_key": "OPENAI_API_KEY",
    "has_gateway_token": "MOLTBOT_GATEWAY_TOKEN",
}

# Running first, then starting, completed, failed
STATUS_ORDER = {
    ProcessStatus.RUNNING: 0,
    ProcessStatus.STARTING: 1,
    ProcessStatus.COMPLETED: 2,
    ProcessStatus.FAILED: 3,
}


def sort_processes(processes: list[Process]) -> list[Process]:
    """Order by status, newest start first within a status."""
    by_start = sorted(
        processes,
        key=lambda p: p.start_time.isoformat() if p.start_time else "",
        reverse=True,
    )
    return sorted(by_start, key=lambda p: STATUS_ORDER.get(p.status, 99))


def parse_json(text: str) -> Any:
    """Decode JSON, returning None for anything that does not decode."""
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None


def parse_timeout(value: str | None, default: int, maximum: int) -> int:
    """Parse a timeout query parameter in seconds, capped at ``maximum``."""
    try:
        seconds = int(value) if value else default
    except ValueError:
        seconds = default
    return max(1, min(seconds, maximum))


def create_debug_routes(service: "RelayService") -> list[Route]:
    """Create the /debug routes.

    Args:
        service: The configured RelayService

    Returns:
        List of Starlette routes
    """
    supervisor = service.supervisor
    gateway = service.gateway
    debug_config = service.config.debug

    async def processes(request: Request) -> Response:
        """List all processes, optionally with their logs."""
        include_logs = request.query_params.get("logs") == "true"
        try:
            found = await supervisor.list()
        except RelayError as e:
            return JSONResponse({"error": str(e)}, status_code=500)

        data: list[dict[str, Any]] = []
        for process in sort_processes(found):
            entry = process.to_dict()
            if include_logs:
                try:
                    logs = await supervisor.logs(process)
                    entry["stdout"] = logs.stdout
                    entry["stderr"] = logs.stderr
                except LogRetrievalError:
                    entry["logs_error"] = "Failed to retrieve logs"
            data.append(entry)

        return JSONResponse({"count": len(found), "processes": data})

    async def logs(request: Request) -> Response:
        """Logs of one process, or of the gateway when no id is given."""
        process_id = request.query_params.get("id")
        try:
            if process_id:
                process = await supervisor.find(lambda p: p.id == process_id)
                if process is None:
                    return JSONResponse(
                        {
                            "status": "not_found",
                            "message": f"Process {process_id} not found",
                            "stdout": "",
                            "stderr": "",
                        },
                        status_code=404,
                    )
            else:
                process = await gateway.find_existing()
                if process is None:
                    return JSONResponse(
                        {
                            "status": "no_process",
                            "message": "No Moltbot process is currently running",
                            "stdout": "",
                            "stderr": "",
                        }
                    )

            output = await supervisor.logs(process)
        except RelayError as e:
            return JSONResponse(
                {
                    "status": "error",
                    "message": f"Failed to get logs: {e}",
                    "stdout": "",
                    "stderr": "",
                },
                status_code=500,
            )

        return JSONResponse(
            {
                "status": "ok",
                "process_id": process.id,
                "process_status": process.status.value,
                "stdout": output.stdout,
                "stderr": output.stderr,
            }
        )

    async def cli(request: Request) -> Response:
        """Run a command and wait for it, up to a bounded timeout."""
        command = request.query_params.get("cmd") or debug_config.default_cli_command
        timeout_seconds = parse_timeout(
            request.query_params.get("timeout"),
            debug_config.cli_default_timeout_seconds,
            debug_config.cli_max_timeout_seconds,
        )
        max_attempts = timeout_seconds * 1000 // CLI_POLL_INTERVAL_MS

        try:
            process = await supervisor.start(command)
            result = await supervisor.await_settled_with_attempts(
                process,
                poll_interval_ms=CLI_POLL_INTERVAL_MS,
                max_attempts=max_attempts,
            )
            output = await supervisor.logs_or_empty(result.value)
        except RelayError as e:
            logger.error("Debug command failed", context={"command": command}, error=e)
            return JSONResponse({"error": str(e), "command": command}, status_code=500)

        return JSONResponse(
            {
                "command": command,
                "status": result.value.status.value,
                "exitCode": result.value.exit_code,
                "attempts": result.attempts,
                "timeoutSecs": timeout_seconds,
                "stdout": output.stdout,
                "stderr": output.stderr,
            }
        )

    async def version(request: Request) -> Response:
        """Gateway CLI and runtime versions from inside the sandbox."""
        try:
            versions = []
            for command in (debug_config.version_command, debug_config.runtime_version_command):
                process = await supervisor.start(command)
                process = await supervisor.await_settled(
                    process,
                    poll_interval_ms=CLI_POLL_INTERVAL_MS // 10,
                    max_attempts=VERSION_WAIT_ATTEMPTS,
                )
                output = await supervisor.logs_or_empty(process)
                versions.append((output.stdout or output.stderr).strip())
        except RelayError as e:
            return JSONResponse(
                {"status": "error", "message": f"Failed to get version info: {e}"},
                status_code=500,
            )

        return JSONResponse(
            {
                "moltbot_version": versions[0],
                "node_version": versions[1],
            }
        )

    async def gateway_api(request: Request) -> Response:
        """Send a GET to the gateway's HTTP API and report what came back."""
        path = request.query_params.get("path") or "/"
        try:
            response = await service.sandbox.fetch(service.config.gateway.port, path)
        except RelayError as e:
            logger.error("Gateway API request failed", context={"path": path}, error=e)
            return JSONResponse({"error": str(e), "path": path}, status_code=500)

        body: Any = response.text()
        if "application/json" in response.content_type:
            decoded = parse_json(body)
            if decoded is not None:
                body = decoded

        return JSONResponse(
            {
                "path": path,
                "status": response.status_code,
                "contentType": response.content_type,
                "body": body,
            }
        )

    async def container_config(request: Request) -> Response:
        """The gateway's own config file, read from inside the sandbox."""
        try:
            process = await supervisor.start(debug_config.container_config_command)
            process = await supervisor.await_settled(
                process,
                poll_interval_ms=CONTAINER_CONFIG_POLL_INTERVAL_MS,
                max_attempts=CONTAINER_CONFIG_WAIT_ATTEMPTS,
            )
            output = await supervisor.logs_or_empty(process)
        except RelayError as e:
            return JSONResponse({"error": str(e)}, status_code=500)

        config = parse_json(output.stdout)
        data: dict[str, Any] = {
            "status": process.status.value,
            "exitCode": process.exit_code,
            "config": config,
            "stderr": output.stderr,
        }
        if config is None:
            data["raw"] = output.stdout
        return JSONResponse(data)

    async def env(request: Request) -> Response:
        """Sanitized view of the relay configuration."""
        config = service.config
        data: dict[str, Any] = {
            key: bool(config.gateway.env.get(name)) for key, name in REPORTED_SECRETS.items()
        }
        data.update(
            {
                "gateway_env_keys": sorted(config.gateway.env),
                "gateway_port": config.gateway.port,
                "sandbox_backend": config.sandbox.backend,
                "has_sandbox_api_token": bool(config.sandbox.api_token),
                "ws_path": config.server.ws_path,
                "debug_routes": config.debug.enabled,
                "log_level": config.logging.level,
            }
        )
        return JSONResponse(data)

    return [
        Route("/debug/processes", processes, methods=["GET"]),
        Route("/debug/logs", logs, methods=["GET"]),
        Route("/debug/cli", cli, methods=["GET"]),
        Route("/debug/version", version, methods=["GET"]),
        Route("/debug/gateway-api", gateway_api, methods=["GET"]),
        Route("/debug/container-config", container_config, methods=["GET"]),
        Route("/debug/env", env, methods=["GET"]),
    ]
