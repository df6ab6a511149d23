"""Shared signaling state behind one serialized boundary."""
import logging
import threading
from typing import Any, Dict, List, Optional

from ..streaming import BridgeState, MediaBridge
from .registry import Connection, ConnectionRegistry, Role
from .router import BROADCAST_TARGET, SignalingMessage, SignalingRouter
from .slot import BroadcasterSlot

logger = logging.getLogger(__name__)

__all__ = [
    "BROADCAST_TARGET",
    "BroadcasterSlot",
    "Connection",
    "ConnectionRegistry",
    "Coordinator",
    "Role",
    "SignalingMessage",
    "SignalingRouter",
    "SocketIOTransport",
]


class SocketIOTransport:
    """Delivers outbound events to single Socket.IO sessions."""

    def __init__(self, socketio, namespace: str = "/") -> None:
        self.socketio = socketio
        self.namespace = namespace

    def emit(self, sid: str, event: str, payload: Any = None) -> None:
        if payload is None:
            self.socketio.emit(event, to=sid, namespace=self.namespace)
        else:
            self.socketio.emit(event, payload, to=sid, namespace=self.namespace)

    def close(self, sid: str) -> None:
        # runs the regular disconnect handler for sid before returning
        self.socketio.server.disconnect(sid, namespace=self.namespace)


class Coordinator:
    """Owns the registry, broadcaster slot, router and media bridge.

    Every state change goes through ``self.lock``. The lock is re-entrant
    because evicting a broadcaster closes its connection, and that close
    calls back into :meth:`disconnect` on the same thread.
    """

    def __init__(self, transport, bridge: MediaBridge) -> None:
        self.lock = threading.RLock()
        self.transport = transport
        self.bridge = bridge
        self.registry = ConnectionRegistry()
        self.slot = BroadcasterSlot(self.registry, transport, bridge)
        self.router = SignalingRouter(self.registry, self.slot, transport, self.lock)

    def connect(self, conn_id: str) -> Connection:
        with self.lock:
            logger.info("New connection: %s", conn_id)
            return self.registry.register(conn_id)

    def join_as_broadcaster(self, conn_id: str) -> bool:
        with self.lock:
            return self.slot.claim(conn_id)

    def join_as_viewer(self, conn_id: str) -> List[str]:
        with self.lock:
            # a broadcaster switching to watching gives up the slot first
            if self.slot.current() == conn_id:
                self.slot.release(conn_id)
            return self.router.join_as_viewer(conn_id)

    def relay(self, conn_id: str, kind: str, data) -> bool:
        return self.router.relay(conn_id, kind, data)

    def disconnect(self, conn_id: str) -> bool:
        with self.lock:
            logger.info("Disconnected: %s", conn_id)
            return self.router.disconnect(conn_id)

    def current_broadcaster(self) -> Optional[str]:
        with self.lock:
            return self.slot.current()

    def is_broadcaster(self, conn_id: str) -> bool:
        with self.lock:
            return conn_id is not None and self.slot.current() == conn_id

    def stream_data(self, conn_id: str, chunk: bytes) -> bool:
        with self.lock:
            if not self.is_broadcaster(conn_id):
                logger.debug("Ignored stream-data from non-broadcaster %s", conn_id)
                return False
            if self.bridge.state is BridgeState.IDLE:
                self.bridge.start()
            if not chunk:
                return False
            return self.bridge.write(chunk)

    def start_stream(self, conn_id: str) -> bool:
        with self.lock:
            if not self.is_broadcaster(conn_id):
                logger.debug("Ignored start-stream-to-rtmp from non-broadcaster %s", conn_id)
                return False
            logger.info("Starting stream to RTMP for %s", conn_id)
            self.bridge.start()
            self.transport.emit(conn_id, "rtmp-stream-started")
            return True

    def stop_stream(self, conn_id: str) -> bool:
        with self.lock:
            if not self.is_broadcaster(conn_id):
                logger.debug("Ignored stop-stream-to-rtmp from non-broadcaster %s", conn_id)
                return False
            logger.info("Stopping stream to RTMP for %s", conn_id)
            self.bridge.stop()
            self.transport.emit(conn_id, "rtmp-stream-stopped")
            return True

    def status(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "broadcasterConnected": self.slot.current() is not None,
                "viewerCount": len(self.registry.list_by_role(Role.VIEWER)),
                "totalConnections": len(self.registry),
            }
