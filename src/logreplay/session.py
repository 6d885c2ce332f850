"""
Per-connection session state.

Each WebSocket connection gets its own SessionContext, created when the
client connects and dropped when it disconnects. The context remembers the
last ReplayResult produced for that connection.

The registry is an ordinary object owned by the application instance (see
create_app), not a module-level table, so two apps in one process (as in
tests) never share sessions.
"""

import time
from collections.abc import Iterator
from dataclasses import dataclass, field

from logreplay.schema import ReplayResult


@dataclass
class SessionContext:
    """
    State of one connection.

    Attributes:
        connection_id: Identity of the connection
        last_result: Most recent replay result, if any
        connected_at: Unix timestamp of the connect
        replays: Number of replays completed on this connection
    """

    connection_id: str
    last_result: ReplayResult | None = None
    connected_at: float = field(default_factory=time.time)
    replays: int = 0

    def record(self, result: ReplayResult) -> None:
        """Store a result, replacing the previous one."""
        self.last_result = result
        self.replays += 1


class SessionRegistry:
    """
    Maps connection ids to their SessionContext.

    Usage:
        registry = SessionRegistry()
        session = registry.on_connect("abc")
        registry.on_replay_complete("abc", result)
        registry.on_disconnect("abc")
    """

    def __init__(self) -> None:
        self._sessions: dict[str, SessionContext] = {}

    def on_connect(self, connection_id: str) -> SessionContext:
        """Create an empty session for a new connection."""
        session = SessionContext(connection_id=connection_id)
        self._sessions[connection_id] = session
        return session

    def on_replay_complete(self, connection_id: str, result: ReplayResult) -> bool:
        """
        Store the latest result for a connection.

        Returns:
            False if the connection is already gone (the result is dropped)
        """
        session = self._sessions.get(connection_id)
        if session is None:
            return False
        session.record(result)
        return True

    def on_disconnect(self, connection_id: str) -> None:
        """Discard a connection's session. Unknown ids are ignored."""
        self._sessions.pop(connection_id, None)

    def get(self, connection_id: str) -> SessionContext | None:
        """Look up a session."""
        return self._sessions.get(connection_id)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))
