"""Registry of live signaling connections and their roles."""
import enum
from dataclasses import dataclass
from typing import Dict, List, Optional


class Role(enum.Enum):
    UNASSIGNED = "unassigned"
    BROADCASTER = "broadcaster"
    VIEWER = "viewer"


@dataclass
class Connection:
    id: str
    role: Role = Role.UNASSIGNED


class ConnectionRegistry:
    """Maps connection ids to :class:`Connection` objects.

    Iteration order is insertion order, which is what viewer enumeration
    relies on. ``remove`` tolerates unknown ids so a disconnect that is
    delivered twice does no harm.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}

    def register(self, conn_id: str) -> Connection:
        conn = self._connections.get(conn_id)
        if conn is None:
            conn = Connection(conn_id)
            self._connections[conn_id] = conn
        return conn

    def set_role(self, conn_id: str, role: Role) -> None:
        conn = self._connections.get(conn_id)
        if conn is not None:
            conn.role = role

    def get(self, conn_id: str) -> Optional[Connection]:
        return self._connections.get(conn_id)

    def remove(self, conn_id: str) -> Optional[Connection]:
        return self._connections.pop(conn_id, None)

    def list_by_role(self, role: Role) -> List[str]:
        return [c.id for c in self._connections.values() if c.role is role]

    def ids(self) -> List[str]:
        return list(self._connections)

    def __contains__(self, conn_id) -> bool:
        return conn_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)
