"""Pytest configuration and fixtures."""

from typing import Any

import pytest

from tests.fakes import FakeSandbox


@pytest.fixture
def sandbox() -> FakeSandbox:
    """Fake sandbox with no processes."""
    return FakeSandbox()


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Sample configuration dictionary with fast polling."""
    return {
        "gateway": {
            "command": "/usr/local/bin/start-moltbot.sh",
            "start_timeout_seconds": 0.2,
            "poll_interval_ms": 10,
        },
        "sandbox": {"backend": "local"},
        "server": {"ws_path": "/ws"},
        "debug": {"enabled": True, "cli_default_timeout_seconds": 1},
    }
