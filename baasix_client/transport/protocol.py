"""Frame helpers for the realtime event protocol.

Events travel as JSON text frames::

    {"type": "event", "event": "products:create", "data": {...}, "id": 3}
    {"type": "ack", "id": 3, "data": {"status": "ok"}}

``id`` is present on an event only when the sender expects an ack; the
socket answers inbound ones with ``{"status": "received"}`` before dispatch.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FRAME_EVENT = "event"
FRAME_ACK = "ack"


@dataclass(frozen=True)
class Frame:
    """Decoded realtime frame."""

    type: str
    event: str | None = None
    data: Any = None
    id: int | None = None


def build_event_frame(event: str, data: Any = None, *, ack_id: int | None = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": FRAME_EVENT, "event": event, "data": data}
    if ack_id is not None:
        frame["id"] = ack_id
    return frame


def build_ack_frame(ack_id: int, data: Any = None) -> dict[str, Any]:
    return {"type": FRAME_ACK, "id": ack_id, "data": data}


def parse_frame(payload: Any) -> Frame:
    """Validate a decoded JSON payload.

    Raises:
        ValueError: If the payload is not a well-formed frame.
    """
    if not isinstance(payload, dict):
        raise ValueError("Frame must be a JSON object")

    frame_type = payload.get("type")
    frame_id = payload.get("id")
    if frame_id is not None and not isinstance(frame_id, int):
        raise ValueError(f"Invalid frame id: {frame_id!r}")

    if frame_type == FRAME_EVENT:
        event = payload.get("event")
        if not isinstance(event, str) or not event:
            raise ValueError("Event frame without event name")
        return Frame(FRAME_EVENT, event=event, data=payload.get("data"), id=frame_id)

    if frame_type == FRAME_ACK:
        if frame_id is None:
            raise ValueError("Ack frame without id")
        return Frame(FRAME_ACK, data=payload.get("data"), id=frame_id)

    raise ValueError(f"Unknown frame type: {frame_type!r}")


def to_ws_url(url: str, path: str) -> str:
    """Turn an HTTP base URL plus endpoint path into a WebSocket URL."""
    if url.startswith("https://"):
        url = "wss://" + url[len("https://") :]
    elif url.startswith("http://"):
        url = "ws://" + url[len("http://") :]
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{url.rstrip('/')}{path}"
