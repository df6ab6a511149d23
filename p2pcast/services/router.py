"""Addressed relay of WebRTC signaling messages and role notifications."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import RoutingError
from .registry import ConnectionRegistry, Role
from .slot import BroadcasterSlot

logger = logging.getLogger(__name__)

# Reserved target meaning "whoever is broadcasting right now".
BROADCAST_TARGET = "broadcast"

# message kind -> the one payload field it carries
MESSAGE_FIELDS = {
    "offer": "sdp",
    "answer": "sdp",
    "ice-candidate": "candidate",
}


@dataclass
class SignalingMessage:
    kind: str
    target: str
    body: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, kind: str, data) -> Optional["SignalingMessage"]:
        """Build a message from an inbound event payload.

        Returns ``None`` for kinds the router does not know about. Raises
        :class:`RoutingError` when the payload carries no usable target.
        """
        payload_field = MESSAGE_FIELDS.get(kind)
        if payload_field is None:
            return None
        if not isinstance(data, dict):
            raise RoutingError(f"{kind} payload must be an object")
        target = data.get("target")
        if not isinstance(target, str) or not target:
            raise RoutingError(f"{kind} has no target")
        return cls(kind, target, {payload_field: data.get(payload_field)})

    def stamped(self, sender: str) -> Dict[str, Any]:
        # the sender always comes from the server, never from the client
        return {**self.body, "sender": sender}


class SignalingRouter:
    def __init__(self, registry: ConnectionRegistry, slot: BroadcasterSlot, transport, lock) -> None:
        self.registry = registry
        self.slot = slot
        self.transport = transport
        self.lock = lock

    def join_as_viewer(self, conn_id: str) -> List[str]:
        """Mark ``conn_id`` as a viewer and introduce it to everyone relevant.

        Caller holds the coordinator lock. Returns the other viewer ids, or an
        empty list when ``conn_id`` has already disconnected.
        """
        if conn_id not in self.registry:
            logger.debug("Ignoring viewer join from closed connection %s", conn_id)
            return []
        self.registry.set_role(conn_id, Role.VIEWER)
        logger.info("Viewer connected: %s", conn_id)

        broadcaster = self.slot.current()
        if broadcaster is not None:
            self.transport.emit(conn_id, "broadcaster-available")
            self.transport.emit(broadcaster, "new-viewer", {"viewerId": conn_id})
        else:
            self.transport.emit(conn_id, "no-broadcaster")

        others = [v for v in self.registry.list_by_role(Role.VIEWER) if v != conn_id]
        self.transport.emit(conn_id, "other-viewers", others)
        for viewer_id in others:
            self.transport.emit(viewer_id, "new-peer", {"peerId": conn_id})
        return others

    def relay(self, sender_id: str, kind: str, data) -> bool:
        """Forward an offer/answer/ice-candidate to its addressee.

        Unresolvable targets and malformed payloads are dropped. Never
        touches roles or the slot.
        """
        try:
            message = SignalingMessage.parse(kind, data)
            if message is None:
                logger.debug("Ignoring unknown message type %r from %s", kind, sender_id)
                return False
            with self.lock:
                target_id = self.resolve(message.target)
        except RoutingError as exc:
            logger.debug("Dropped %s from %s: %s", kind, sender_id, exc)
            return False

        logger.debug("%s from %s to %s", kind, sender_id, target_id)
        self.transport.emit(target_id, kind, message.stamped(sender_id))
        return True

    def resolve(self, target: str) -> str:
        if target == BROADCAST_TARGET:
            broadcaster = self.slot.current()
            if broadcaster is None:
                raise RoutingError("no broadcaster to route to")
            return broadcaster
        if target not in self.registry:
            raise RoutingError(f"unknown target {target}")
        return target

    def disconnect(self, conn_id: str) -> bool:
        """Tear down ``conn_id``. Caller holds the coordinator lock."""
        if self.slot.current() == conn_id:
            self.slot.release(conn_id)
            self.registry.remove(conn_id)
            return True

        if self.registry.remove(conn_id) is None:
            logger.debug("Disconnect for unknown connection %s", conn_id)
            return False
        logger.info("Peer disconnected: %s", conn_id)
        for other in self.registry.ids():
            self.transport.emit(other, "peer-left", {"peerId": conn_id})
        return True
