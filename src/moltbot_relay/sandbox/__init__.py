"""Sandbox backends hosting the gateway process."""

from moltbot_relay.sandbox.local import LocalSandbox
from moltbot_relay.sandbox.remote import RemoteSandbox

__all__ = [
    "LocalSandbox",
    "RemoteSandbox",
]
