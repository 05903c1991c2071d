"""Tests for debug routes."""

from collections.abc import Iterator
from typing import Any

import pytest
from starlette.testclient import TestClient

from moltbot_relay.config import Config
from moltbot_relay.exceptions import SandboxError, SpawnError
from moltbot_relay.protocols.sandbox import HttpResponse, ProcessStatus
from moltbot_relay.server.app import create_app
from moltbot_relay.server.debug import parse_json, parse_timeout, sort_processes
from moltbot_relay.service import RelayService
from tests.fakes import CommandOutcome, FakeSandbox

GATEWAY_COMMAND = "/usr/local/bin/start-moltbot.sh"


@pytest.fixture
def client(sandbox: FakeSandbox, sample_config_dict: dict[str, Any]) -> Iterator[TestClient]:
    """Test client with debug routes enabled."""
    service = RelayService(Config.from_dict(sample_config_dict), sandbox=sandbox)
    with TestClient(create_app(service)) as client:
        yield client


class TestProcesses:
    """Tests for /debug/processes."""

    def test_sorted_by_status_then_newest(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """Running first, then starting, completed, failed; newest first within a status."""
        completed = sandbox.add_process("ls", ProcessStatus.COMPLETED, exit_code=0)
        older_running = sandbox.add_process("a", ProcessStatus.RUNNING)
        failed = sandbox.add_process("b", ProcessStatus.FAILED, exit_code=1)
        starting = sandbox.add_process("c", ProcessStatus.STARTING)
        newer_running = sandbox.add_process("d", ProcessStatus.RUNNING)

        response = client.get("/debug/processes")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 5
        assert [p["id"] for p in data["processes"]] == [
            newer_running.id,
            older_running.id,
            starting.id,
            completed.id,
            failed.id,
        ]
        assert data["processes"][3]["exitCode"] == 0
        assert "stdout" not in data["processes"][0]

    def test_include_logs(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """Logs are attached on request; failures are marked per process."""
        ok = sandbox.add_process("echo", ProcessStatus.COMPLETED, stdout="hello", stderr="")
        broken = sandbox.add_process("cat", ProcessStatus.COMPLETED)
        sandbox.failing_logs.add(broken.id)

        response = client.get("/debug/processes", params={"logs": "true"})

        processes = {p["id"]: p for p in response.json()["processes"]}
        assert processes[ok.id]["stdout"] == "hello"
        assert processes[broken.id]["logs_error"] == "Failed to retrieve logs"


class TestLogs:
    """Tests for /debug/logs."""

    def test_unknown_id_returns_404(self, client: TestClient) -> None:
        """An unknown process id is not found."""
        response = client.get("/debug/logs", params={"id": "nope"})

        assert response.status_code == 404
        assert response.json() == {
            "status": "not_found",
            "message": "Process nope not found",
            "stdout": "",
            "stderr": "",
        }

    def test_no_gateway(self, client: TestClient) -> None:
        """Without an id and without a gateway there is nothing to show."""
        response = client.get("/debug/logs")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "no_process"
        assert data["message"] == "No Moltbot process is currently running"

    def test_gateway_logs_by_default(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """Without an id the gateway's logs are returned."""
        gateway = sandbox.add_process(
            GATEWAY_COMMAND, ProcessStatus.RUNNING, stdout="listening on 18789"
        )

        response = client.get("/debug/logs")

        assert response.json() == {
            "status": "ok",
            "process_id": gateway.id,
            "process_status": "running",
            "stdout": "listening on 18789",
            "stderr": "",
        }

    def test_logs_by_id(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """A given id selects that process."""
        process = sandbox.add_process("echo", ProcessStatus.FAILED, stderr="oops")

        data = client.get("/debug/logs", params={"id": process.id}).json()

        assert data["process_id"] == process.id
        assert data["process_status"] == "failed"
        assert data["stderr"] == "oops"

    def test_log_failure_returns_500(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """Retrieval errors are reported as server errors."""
        process = sandbox.add_process("echo", ProcessStatus.COMPLETED)
        sandbox.failing_logs.add(process.id)

        response = client.get("/debug/logs", params={"id": process.id})

        assert response.status_code == 500
        assert response.json()["status"] == "error"


class TestCli:
    """Tests for /debug/cli."""

    def test_runs_command(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """A finished command reports its status and output."""
        sandbox.on(
            "openclaw devices list",
            CommandOutcome(status=ProcessStatus.COMPLETED, exit_code=0, stdout="no devices\n"),
        )

        response = client.get("/debug/cli", params={"cmd": "openclaw devices list"})

        assert response.status_code == 200
        data = response.json()
        assert data["command"] == "openclaw devices list"
        assert data["status"] == "completed"
        assert data["exitCode"] == 0
        assert data["attempts"] == 1
        assert data["timeoutSecs"] == 1
        assert data["stdout"] == "no devices\n"

    def test_default_command(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """Without cmd the CLI help is run."""
        sandbox.on("openclaw --help", CommandOutcome(status=ProcessStatus.COMPLETED, exit_code=0))

        client.get("/debug/cli")

        assert sandbox.start_calls == ["openclaw --help"]

    def test_timeout_returns_running_process(
        self, client: TestClient, sandbox: FakeSandbox
    ) -> None:
        """A command still running at the timeout is reported as running."""
        sandbox.on("tail -f", CommandOutcome(status=ProcessStatus.RUNNING))

        data = client.get("/debug/cli", params={"cmd": "tail -f log", "timeout": "1"}).json()

        assert data["status"] == "running"
        assert data["exitCode"] is None
        assert data["attempts"] == 2

    def test_spawn_failure_returns_500(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """A rejected command is a server error."""
        sandbox.spawn_error = SpawnError("no such sandbox")

        response = client.get("/debug/cli", params={"cmd": "ls"})

        assert response.status_code == 500
        assert response.json() == {"error": "no such sandbox", "command": "ls"}


class TestVersion:
    """Tests for /debug/version."""

    def test_reports_versions(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """Versions come from the CLI and runtime version commands."""
        sandbox.on(
            "openclaw --version",
            CommandOutcome(status=ProcessStatus.COMPLETED, exit_code=0, stdout="2026.1.29\n"),
        )
        sandbox.on(
            "node --version",
            CommandOutcome(status=ProcessStatus.COMPLETED, exit_code=0, stdout="v22.13.1\n"),
        )

        response = client.get("/debug/version")

        assert response.status_code == 200
        assert response.json() == {"moltbot_version": "2026.1.29", "node_version": "v22.13.1"}


class TestGatewayApi:
    """Tests for /debug/gateway-api."""

    def test_json_body_decoded(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """JSON responses from the gateway are returned decoded."""
        sandbox.http_responses["/api/status"] = HttpResponse(
            200, {"content-type": "application/json; charset=utf-8"}, b'{"ok":true}'
        )

        response = client.get("/debug/gateway-api", params={"path": "/api/status"})

        assert response.status_code == 200
        assert response.json() == {
            "path": "/api/status",
            "status": 200,
            "contentType": "application/json; charset=utf-8",
            "body": {"ok": True},
        }
        assert sandbox.fetch_requests == [(18789, "/api/status")]

    def test_text_body_and_default_path(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """Other responses come back as text; the path defaults to the root."""
        response = client.get("/debug/gateway-api")

        data = response.json()
        assert data["path"] == "/"
        assert data["status"] == 404
        assert data["body"] == "Not Found"

    def test_unreachable_gateway_returns_500(
        self, client: TestClient, sandbox: FakeSandbox
    ) -> None:
        """Fetch failures are reported with the path."""
        sandbox.connect_error = SandboxError("connection refused")

        response = client.get("/debug/gateway-api", params={"path": "/health"})

        assert response.status_code == 500
        assert response.json() == {"error": "connection refused", "path": "/health"}


class TestContainerConfig:
    """Tests for /debug/container-config."""

    def test_config_parsed(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """A JSON config file is returned parsed."""
        sandbox.on(
            "clawdbot.json",
            CommandOutcome(
                status=ProcessStatus.COMPLETED,
                exit_code=0,
                stdout='{"gateway": {"port": 18789}}',
            ),
        )

        response = client.get("/debug/container-config")

        assert response.status_code == 200
        assert response.json() == {
            "status": "completed",
            "exitCode": 0,
            "config": {"gateway": {"port": 18789}},
            "stderr": "",
        }

    def test_unparsable_config_returned_raw(
        self, client: TestClient, sandbox: FakeSandbox
    ) -> None:
        """Output that is not JSON is returned as raw text."""
        sandbox.on(
            "clawdbot.json",
            CommandOutcome(
                status=ProcessStatus.FAILED,
                exit_code=1,
                stderr="cat: /root/.clawdbot/clawdbot.json: No such file or directory",
            ),
        )

        data = client.get("/debug/container-config").json()

        assert data["status"] == "failed"
        assert data["config"] is None
        assert data["raw"] == ""
        assert "No such file" in data["stderr"]

    def test_spawn_failure_returns_500(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """A rejected command is reported as an error."""
        sandbox.spawn_error = SpawnError("no such sandbox")

        response = client.get("/debug/container-config")

        assert response.status_code == 500
        assert response.json() == {"error": "no such sandbox"}


class TestEnv:
    """Tests for /debug/env."""

    def test_secrets_reported_as_flags(
        self, sandbox: FakeSandbox, sample_config_dict: dict[str, Any]
    ) -> None:
        """Secrets are reported present or absent, never by value."""
        sample_config_dict["gateway"]["env"] = {
            "ANTHROPIC_API_KEY": "sk-ant-secret",
            "MOLTBOT_GATEWAY_TOKEN": "tok-secret",
        }
        service = RelayService(Config.from_dict(sample_config_dict), sandbox=sandbox)

        with TestClient(create_app(service)) as client:
            response = client.get("/debug/env")

        data = response.json()
        assert data["has_anthropic_key"] is True
        assert data["has_openai_key"] is False
        assert data["has_gateway_token"] is True
        assert data["gateway_env_keys"] == ["ANTHROPIC_API_KEY", "MOLTBOT_GATEWAY_TOKEN"]
        assert data["sandbox_backend"] == "local"
        assert data["debug_routes"] is True
        assert "secret" not in response.text


class TestHelpers:
    """Tests for debug helpers."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(None, 15), ("", 15), ("30", 30), ("500", 120), ("abc", 15), ("0", 1)],
    )
    def test_parse_timeout(self, value: str | None, expected: int) -> None:
        """Timeouts default, cap and floor."""
        assert parse_timeout(value, default=15, maximum=120) == expected

    def test_sort_processes_empty(self) -> None:
        """Sorting an empty list is a no-op."""
        assert sort_processes([]) == []

    @pytest.mark.parametrize("text", ["", "not json", "[" * 100000])
    def test_parse_json_failures_are_none(self, text: str) -> None:
        """Undecodable text gives None."""
        assert parse_json(text) is None
