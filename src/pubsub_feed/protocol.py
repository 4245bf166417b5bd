"""Wire format for the PubSub websocket protocol."""

import json
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .exceptions import DecodeError


class FrameType(Enum):
    """Inbound frame type tags."""
    MESSAGE = "MESSAGE"
    RESPONSE = "RESPONSE"
    PONG = "PONG"
    RECONNECT = "RECONNECT"


class RequestType(Enum):
    """Outbound request type tags."""
    LISTEN = "LISTEN"
    UNLISTEN = "UNLISTEN"
    PING = "PING"


@dataclass
class InboundFrame:
    """One decoded inbound frame. ``payload`` is still opaque (usually JSON text)."""
    frame_type: FrameType
    topic: Optional[str] = None
    nonce: Optional[str] = None
    error: Optional[str] = None
    status: Optional[str] = None
    payload: Any = None
    received_at: float = field(default_factory=time.time)

    @property
    def is_success(self) -> bool:
        """Whether a RESPONSE frame acknowledges its request."""
        if self.error:
            return False
        if self.status is not None:
            return self.status.lower() == "ok"
        return True

    @property
    def failure_reason(self) -> str:
        return self.error or (self.status if self.status and self.status.lower() != "ok" else "") or "unknown error"


def generate_nonce() -> str:
    """Random correlation token for a request."""
    return secrets.token_hex(15)


def parse_frame(raw: Union[str, bytes]) -> InboundFrame:
    """
    Parse the envelope of an inbound frame.

    Accepts the platform's shape (``data.topic`` / ``data.message``) as well
    as a flat shape with top-level ``topic`` and ``data``.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Frame is not valid UTF-8: {e}", raw_data=raw)

    try:
        message = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON frame: {e}", raw_data=raw)

    if not isinstance(message, dict):
        raise DecodeError("Frame must be a JSON object", raw_data=raw)

    type_tag = message.get("type")
    try:
        frame_type = FrameType(str(type_tag).upper())
    except ValueError:
        raise DecodeError(f"Unknown frame type: {type_tag!r}", raw_data=raw)

    data = message.get("data")
    topic = message.get("topic")
    payload = data
    if isinstance(data, dict) and "topic" in data:
        topic = topic or data.get("topic")
        payload = data.get("message")

    if frame_type == FrameType.MESSAGE:
        if not isinstance(topic, str) or not topic:
            raise DecodeError("MESSAGE frame without topic", raw_data=raw)
        if payload is None:
            raise DecodeError("MESSAGE frame without payload", topic=topic, raw_data=raw)

    nonce = message.get("nonce")
    if frame_type == FrameType.RESPONSE and not nonce:
        raise DecodeError("RESPONSE frame without nonce", raw_data=raw)

    return InboundFrame(
        frame_type=frame_type,
        topic=topic,
        nonce=nonce,
        error=message.get("error") or None,
        status=message.get("status"),
        payload=payload,
    )


def build_request(
    request_type: RequestType,
    topics: List[str],
    auth_token: Optional[str],
    nonce: Optional[str] = None
) -> Dict[str, Any]:
    """Build a LISTEN/UNLISTEN request."""
    data: Dict[str, Any] = {"topics": list(topics)}
    if auth_token:
        data["auth_token"] = auth_token
    return {
        "type": request_type.value,
        "nonce": nonce or generate_nonce(),
        "data": data,
    }


def build_ping() -> Dict[str, Any]:
    return {"type": RequestType.PING.value}


def encode_frame(frame: Dict[str, Any]) -> str:
    return json.dumps(frame, separators=(",", ":"))
