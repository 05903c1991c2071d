"""Tests for the relay routes."""

import json
from collections.abc import Iterator
from typing import Any

import pytest
from starlette.testclient import TestClient, WebSocketDenialResponse, WebSocketTestSession
from starlette.websockets import WebSocketDisconnect

from moltbot_relay.config import MOLTBOT_PORT, Config
from moltbot_relay.exceptions import BackendHandshakeError, SandboxError
from moltbot_relay.protocols.sandbox import ProcessStatus
from moltbot_relay.server.app import create_app
from moltbot_relay.service import RelayService
from tests.fakes import CommandOutcome, FakeSandbox

GATEWAY_COMMAND = "/usr/local/bin/start-moltbot.sh"


@pytest.fixture
def service(sandbox: FakeSandbox, sample_config_dict: dict[str, Any]) -> RelayService:
    """Relay service over the fake sandbox."""
    return RelayService(Config.from_dict(sample_config_dict), sandbox=sandbox)


@pytest.fixture
def client(service: RelayService) -> Iterator[TestClient]:
    """Create a test client."""
    with TestClient(create_app(service)) as client:
        yield client


def hang_up(ws: WebSocketTestSession) -> None:
    """Have the gateway close so the relay session ends before the client exits."""
    ws.send_text("close:1000:done")
    with pytest.raises(WebSocketDisconnect):
        ws.receive_text()


@pytest.fixture
def running_gateway(sandbox: FakeSandbox) -> None:
    """A gateway process that is already running."""
    sandbox.add_process(GATEWAY_COMMAND, ProcessStatus.RUNNING)


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    def test_health_returns_ok(self, client: TestClient) -> None:
        """Health endpoint returns status ok."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "timestamp" in data

    def test_request_id_echoed(self, client: TestClient) -> None:
        """An incoming request id is returned on the response."""
        response = client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, client: TestClient) -> None:
        """A request id is generated when none is sent."""
        response = client.get("/health")

        assert response.headers["X-Request-ID"]


class TestUpgradeRequired:
    """Tests for plain HTTP requests to the WebSocket path."""

    def test_get_without_upgrade_returns_426(self, client: TestClient) -> None:
        """A plain GET is rejected with 426 and a JSON error."""
        response = client.get("/ws")

        assert response.status_code == 426
        assert response.json() == {"error": "WebSocket upgrade required"}

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE"])
    def test_other_methods_return_426(self, client: TestClient, method: str) -> None:
        """Any method without an upgrade is rejected the same way."""
        response = client.request(method, "/ws")

        assert response.status_code == 426
        assert response.json() == {"error": "WebSocket upgrade required"}

    def test_no_gateway_started(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """Rejected requests never touch the gateway."""
        client.get("/ws")

        assert sandbox.start_calls == []


class TestRelay:
    """Tests for relaying WebSocket connections."""

    @pytest.mark.usefixtures("running_gateway")
    def test_frames_echoed_through_gateway(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """Text and binary frames make the round trip unchanged."""
        with client.websocket_connect("/ws") as ws:
            ws.send_text('{"method":"connect"}')
            assert ws.receive_text() == '{"method":"connect"}'
            ws.send_bytes(b"\x01\x02")
            assert ws.receive_bytes() == b"\x01\x02"
            hang_up(ws)

        assert sandbox.start_calls == []

    def test_gateway_started_on_first_connection(
        self, client: TestClient, sandbox: FakeSandbox
    ) -> None:
        """A missing gateway is started before relaying."""
        sandbox.on(GATEWAY_COMMAND, CommandOutcome(status=ProcessStatus.RUNNING, polls=2))

        with client.websocket_connect("/ws") as ws:
            ws.send_text("ping")
            assert ws.receive_text() == "ping"
            hang_up(ws)

        assert sandbox.start_calls == [GATEWAY_COMMAND]

    @pytest.mark.usefixtures("running_gateway")
    def test_path_and_query_forwarded(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """The gateway socket gets the original path and query string."""
        with client.websocket_connect("/ws?token=abc%20def&x=1") as ws:
            ws.send_text("hi")
            ws.receive_text()
            hang_up(ws)

        request = sandbox.ws_requests[0]
        assert request["port"] == MOLTBOT_PORT
        assert request["path"] == "/ws"
        assert request["query"] == "token=abc%20def&x=1"

    @pytest.mark.usefixtures("running_gateway")
    def test_gateway_error_translated(self, client: TestClient) -> None:
        """Gateway error frames are rewritten for the client's host."""
        with client.websocket_connect("/ws") as ws:
            ws.send_text("token?")
            data = json.loads(ws.receive_text())
            hang_up(ws)

        assert data["type"] == "res"
        assert data["id"] == 7
        assert data["error"]["code"] == 401
        assert data["error"]["message"] == (
            "Invalid or missing token. Visit https://testserver?token={REPLACE_WITH_YOUR_TOKEN}"
        )

    @pytest.mark.usefixtures("running_gateway")
    def test_gateway_close_forwarded(self, client: TestClient) -> None:
        """A gateway close reaches the client with its code and reason."""
        with client.websocket_connect("/ws") as ws:
            ws.send_text("close:1000:bye")
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == 1000
        assert exc_info.value.reason == "bye"

    @pytest.mark.usefixtures("running_gateway")
    def test_gateway_close_reason_translated(self, client: TestClient) -> None:
        """Gateway close reasons are translated."""
        with client.websocket_connect("/ws") as ws:
            ws.send_text("close:4008:pairing required")
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_text()

        assert exc_info.value.code == 4008
        assert exc_info.value.reason == "Pairing required. Visit https://testserver/_admin/"


class TestRejections:
    """Tests for connections rejected before relaying."""

    def test_gateway_failure_returns_503(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """A gateway that fails to start is reported with details."""
        sandbox.on(
            GATEWAY_COMMAND,
            CommandOutcome(status=ProcessStatus.FAILED, exit_code=1, stderr="missing config"),
        )

        with pytest.raises(WebSocketDenialResponse) as exc_info:
            with client.websocket_connect("/ws"):
                pass

        response = exc_info.value
        assert response.status_code == 503
        data = response.json()
        assert data["error"] == "Moltbot gateway failed to start"
        assert "exit code 1" in data["details"]
        assert "missing config" in data["details"]
        assert sandbox.ws_requests == []

    def test_unreachable_sandbox_returns_503(
        self, client: TestClient, sandbox: FakeSandbox
    ) -> None:
        """A sandbox control API outage is reported like a failed start."""
        sandbox.control_error = SandboxError("Failed to list processes: 502 Bad Gateway")

        with pytest.raises(WebSocketDenialResponse) as exc_info:
            with client.websocket_connect("/ws"):
                pass

        response = exc_info.value
        assert response.status_code == 503
        assert response.json() == {
            "error": "Moltbot gateway failed to start",
            "details": "Failed to list processes: 502 Bad Gateway",
        }
        assert sandbox.ws_requests == []

    @pytest.mark.usefixtures("running_gateway")
    def test_handshake_response_passed_through(
        self, client: TestClient, sandbox: FakeSandbox
    ) -> None:
        """A gateway that declines the upgrade has its response returned as-is."""
        sandbox.handshake_error = BackendHandshakeError(
            status_code=500,
            headers=[("Content-Type", "text/plain"), ("X-Gateway", "1"), ("Connection", "close")],
            body=b"boom",
        )

        with pytest.raises(WebSocketDenialResponse) as exc_info:
            with client.websocket_connect("/ws"):
                pass

        response = exc_info.value
        assert response.status_code == 500
        assert response.content == b"boom"
        assert response.headers["x-gateway"] == "1"
        assert response.headers["content-type"] == "text/plain"
        assert "connection" not in response.headers

    @pytest.mark.usefixtures("running_gateway")
    def test_connect_failure_returns_502(self, client: TestClient, sandbox: FakeSandbox) -> None:
        """A gateway that cannot be reached is reported as a bad gateway."""
        sandbox.connect_error = SandboxError("connection refused")

        with pytest.raises(WebSocketDenialResponse) as exc_info:
            with client.websocket_connect("/ws"):
                pass

        assert exc_info.value.status_code == 502
        assert exc_info.value.json() == {
            "error": "Failed to connect to Moltbot gateway",
            "details": "connection refused",
        }


class TestDebugDisabled:
    """Debug routes are only mounted when enabled."""

    def test_debug_routes_absent(
        self, sandbox: FakeSandbox, sample_config_dict: dict[str, Any]
    ) -> None:
        """Debug endpoints return 404 when disabled."""
        sample_config_dict["debug"] = {"enabled": False}
        service = RelayService(Config.from_dict(sample_config_dict), sandbox=sandbox)

        with TestClient(create_app(service)) as client:
            assert client.get("/debug/processes").status_code == 404
