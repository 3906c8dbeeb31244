"""Message body encoding and decoding."""

from __future__ import annotations

import json
from typing import Any

from .exceptions import MessagingSerializationError

CONTENT_TYPE_TEXT = "text/plain"
CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_BINARY = "application/octet-stream"


def _json_serializer(obj: Any) -> Any:
    """Serialize datetime and other non-JSON types."""
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def encode_body(message: Any) -> tuple[bytes, str]:
    """Encode an outgoing message to ``(body, content_type)``.

    Bytes pass through, strings are UTF-8 encoded, anything else is JSON.
    """
    if isinstance(message, (bytes, bytearray, memoryview)):
        return bytes(message), CONTENT_TYPE_BINARY
    if isinstance(message, str):
        return message.encode("utf-8"), CONTENT_TYPE_TEXT
    try:
        body = json.dumps(message, default=_json_serializer).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise MessagingSerializationError(str(e)) from e
    return body, CONTENT_TYPE_JSON


def decode_body(body: bytes) -> str | bytes:
    """Decode an incoming body as UTF-8 text, or return it raw if that fails."""
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        return body
