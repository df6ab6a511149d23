import logging

from flask import request
from flask_socketio import SocketIO

from .services import Coordinator

logger = logging.getLogger(__name__)

RELAYED_EVENTS = ("offer", "answer", "ice-candidate")


def _as_bytes(data) -> bytes:
    """Normalize a ``stream-data`` payload; anything unusable becomes ``b""``."""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, list) and all(isinstance(b, int) and 0 <= b < 256 for b in data):
        # Uint8Array sent as a plain JSON array
        return bytes(data)
    return b""


def register_socketio_events(socketio: SocketIO, coordinator: Coordinator):
    def on_connect(auth=None):
        coordinator.connect(request.sid)

    def on_disconnect(reason=None):
        coordinator.disconnect(request.sid)

    def on_join_as_broadcaster(*_):
        coordinator.join_as_broadcaster(request.sid)

    def on_join_as_viewer(*_):
        coordinator.join_as_viewer(request.sid)

    def relay(kind):
        def on_message(data=None, *_):
            coordinator.relay(request.sid, kind, data)

        on_message.__name__ = f"on_{kind.replace('-', '_')}"
        return on_message

    def on_stream_data(data=None, *_):
        coordinator.stream_data(request.sid, _as_bytes(data))

    def on_start_stream(*_):
        coordinator.start_stream(request.sid)

    def on_stop_stream(*_):
        coordinator.stop_stream(request.sid)

    handlers = {
        "connect": on_connect,
        "disconnect": on_disconnect,
        "join-as-broadcaster": on_join_as_broadcaster,
        "join-as-viewer": on_join_as_viewer,
        "stream-data": on_stream_data,
        "start-stream-to-rtmp": on_start_stream,
        "stop-stream-to-rtmp": on_stop_stream,
    }
    for kind in RELAYED_EVENTS:
        handlers[kind] = relay(kind)

    for event, handler in handlers.items():
        socketio.on_event(event, handler)

    @socketio.on_error_default
    def on_error(exc):
        event = getattr(request, "event", None) or {}
        logger.exception("Error handling %s from %s", event.get("message"), request.sid)

    return handlers
