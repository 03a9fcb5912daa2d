"""Realtime transport layer.

Components:
- protocol: event/ack frame builders and parser
- ws: WebSocket connection helper
- ws_client: WebSocket message iteration
- socket: named-event socket with acks and auto-reconnect
"""

from .protocol import Frame, build_ack_frame, build_event_frame, parse_frame, to_ws_url
from .socket import EventSocket, RealtimeSocket, SocketFactory, SocketOptions
from .ws import connect_websocket
from .ws_client import BaasixWsClient, BaasixWsMessage, BaasixWsMessageType

__all__ = [
    "BaasixWsClient",
    "BaasixWsMessage",
    "BaasixWsMessageType",
    "EventSocket",
    "Frame",
    "RealtimeSocket",
    "SocketFactory",
    "SocketOptions",
    "build_ack_frame",
    "build_event_frame",
    "connect_websocket",
    "parse_frame",
    "to_ws_url",
]
