"""Sandbox backend discovery via Python entry points."""

from importlib.metadata import entry_points
from typing import Any

from moltbot_relay.protocols import SandboxBackend

SANDBOX_GROUP = "moltbot_relay.backends.sandbox"


def discover_backends(group: str = SANDBOX_GROUP) -> dict[str, Any]:
    """Discover all registered backends for an entry point group.

    Returns:
        Dictionary mapping backend names to their classes
    """
    return {ep.name: ep.load() for ep in entry_points(group=group)}


def get_backend(name: str, group: str = SANDBOX_GROUP) -> Any:
    """Get a backend class by name.

    Raises:
        ValueError: If the backend is not registered
    """
    backends = discover_backends(group)
    if name not in backends:
        available = ", ".join(sorted(backends.keys())) or "(none)"
        raise ValueError(f"Sandbox backend '{name}' not found. Available: {available}")
    return backends[name]


def create_sandbox_backend(backend: str, **kwargs: Any) -> SandboxBackend:
    """Create a SandboxBackend instance.

    Args:
        backend: The backend name (e.g., "local", "remote")
        **kwargs: Backend-specific configuration

    Returns:
        A SandboxBackend implementation
    """
    cls = get_backend(backend)
    return cls(**kwargs)
