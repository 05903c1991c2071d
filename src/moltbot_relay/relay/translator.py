"""Translation of gateway error text into user-facing messages.

The gateway reports authentication and pairing problems with terse
phrases. Messages relayed to the client are rewritten to point the user
at the page that fixes the problem, using the host the client connected
through.
"""

import json
from dataclasses import dataclass
from typing import Any

# WebSocket close reasons are limited to 123 bytes of UTF-8
MAX_CLOSE_REASON_BYTES = 123
TRUNCATED_REASON_CHARS = 120
ELLIPSIS = "..."


@dataclass(frozen=True)
class ErrorMapping:
    """Known gateway failure phrases and the message that replaces them."""

    phrases: tuple[str, ...]
    template: str

    def matches(self, message: str) -> bool:
        return any(phrase in message for phrase in self.phrases)

    def render(self, host: str) -> str:
        # str.replace keeps the literal {REPLACE_WITH_YOUR_TOKEN} placeholder intact
        return self.template.replace("{host}", host)


# Order matters: first match wins
ERROR_MAPPINGS: tuple[ErrorMapping, ...] = (
    ErrorMapping(
        phrases=("gateway token missing", "gateway token mismatch"),
        template="Invalid or missing token. Visit https://{host}?token={REPLACE_WITH_YOUR_TOKEN}",
    ),
    ErrorMapping(
        phrases=("pairing required",),
        template="Pairing required. Visit https://{host}/_admin/",
    ),
)


def translate_error_message(message: str, host: str) -> str:
    """Rewrite a gateway error message for the client.

    Never raises; unknown messages are returned unchanged.

    Args:
        message: Raw error or close text from the gateway
        host: Host the client used to reach the relay

    Returns:
        User-facing message
    """
    for mapping in ERROR_MAPPINGS:
        if mapping.matches(message):
            return mapping.render(host)
    return message


@dataclass(frozen=True)
class Parsed:
    """A text frame that decoded as JSON."""

    value: Any


@dataclass(frozen=True)
class Raw:
    """A text frame that is not JSON; forwarded as-is."""

    text: str


Frame = Parsed | Raw


def parse_frame(text: str) -> Frame:
    """Decode a text frame, falling back to the raw text.

    Never raises: invalid JSON and JSON nested too deeply to decode both
    come back as ``Raw``.
    """
    try:
        return Parsed(json.loads(text))
    except (ValueError, RecursionError):
        return Raw(text)


def _error_message(value: Any) -> str | None:
    if not isinstance(value, dict):
        return None
    error = value.get("error")
    if not isinstance(error, dict):
        return None
    message = error.get("message")
    if isinstance(message, str) and message:
        return message
    return None


def transform_backend_text(text: str, host: str) -> str:
    """Rewrite ``error.message`` inside a gateway text frame.

    Frames that are not JSON, or carry no error message, come back
    unchanged byte for byte. Only ``error.message`` is replaced; every
    other field passes through.
    """
    frame = parse_frame(text)
    if isinstance(frame, Raw):
        return frame.text

    message = _error_message(frame.value)
    if message is None:
        return text

    frame.value["error"]["message"] = translate_error_message(message, host)
    try:
        encoded = json.dumps(frame.value, ensure_ascii=False, separators=(",", ":"))
    except RecursionError:
        return text
    try:
        encoded.encode("utf-8")
    except UnicodeEncodeError:
        # Lone surrogates decoded from \u escapes must stay escaped
        encoded = json.dumps(frame.value, separators=(",", ":"))
    return encoded


def truncate_close_reason(reason: str) -> str:
    """Fit a close reason into the 123-byte limit of a close frame.

    Longer reasons keep their first 120 characters plus an ellipsis,
    shortened further when multi-byte characters still overflow.
    """
    if len(reason.encode("utf-8")) <= MAX_CLOSE_REASON_BYTES:
        return reason

    keep = TRUNCATED_REASON_CHARS
    truncated = reason[:keep] + ELLIPSIS
    while len(truncated.encode("utf-8")) > MAX_CLOSE_REASON_BYTES and keep > 0:
        keep -= 1
        truncated = reason[:keep] + ELLIPSIS
    return truncated


def translate_close_reason(reason: str, host: str) -> str:
    """Translate then truncate a gateway close reason."""
    return truncate_close_reason(translate_error_message(reason, host))
