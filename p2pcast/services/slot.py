import logging
from typing import Optional

from ..errors import EvictionRace
from .registry import ConnectionRegistry, Role

logger = logging.getLogger(__name__)

EVICTION_REASON = "New broadcaster connected"


class BroadcasterSlot:
    """Single-writer register holding the id of the one broadcaster.

    Callers must hold the coordinator lock. A new occupant always goes through
    :meth:`_evict` for the previous one, so two broadcasters never coexist.
    """

    def __init__(self, registry: ConnectionRegistry, transport, bridge) -> None:
        self.registry = registry
        self.transport = transport
        self.bridge = bridge
        self._current: Optional[str] = None

    def current(self) -> Optional[str]:
        return self._current

    def claim(self, conn_id: str) -> bool:
        prev = self._current
        if prev == conn_id:
            logger.info("Broadcaster %s is already current", conn_id)
            return False
        if conn_id not in self.registry:
            logger.debug("Ignoring broadcaster claim from closed connection %s", conn_id)
            return False
        if prev is not None:
            self._evict(prev)

        self._current = conn_id
        self.registry.set_role(conn_id, Role.BROADCASTER)
        logger.info("Broadcaster connected: %s", conn_id)

        for other in self.registry.ids():
            if other != conn_id:
                self.transport.emit(other, "broadcaster-available")
        for viewer_id in self.registry.list_by_role(Role.VIEWER):
            self.transport.emit(conn_id, "new-viewer", {"viewerId": viewer_id})
        return True

    def release(self, conn_id: str) -> bool:
        try:
            self._require_current(conn_id)
        except EvictionRace as exc:
            logger.debug("Ignoring release: %s", exc)
            return False

        self._current = None
        self.registry.set_role(conn_id, Role.UNASSIGNED)
        logger.info("Broadcaster left: %s", conn_id)
        self.bridge.stop()
        for viewer_id in self.registry.list_by_role(Role.VIEWER):
            self.transport.emit(viewer_id, "broadcaster-left")
        return True

    def _require_current(self, conn_id: str) -> None:
        if self._current != conn_id:
            raise EvictionRace(f"{conn_id} is not the current broadcaster ({self._current})")

    def _evict(self, prev: str) -> None:
        # Empty the slot first: closing prev runs its disconnect handler
        # re-entrantly and it must take the plain peer-left branch.
        self._current = None
        self.registry.set_role(prev, Role.UNASSIGNED)
        logger.info("Evicting broadcaster %s", prev)
        self.transport.emit(prev, "force-disconnect", {"reason": EVICTION_REASON})
        self.transport.close(prev)
        self.bridge.stop()
