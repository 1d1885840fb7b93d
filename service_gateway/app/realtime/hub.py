"""
Realtime event hub: live connections, room membership and fan-out.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from shared.errors import ConnectionLimitError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass
class RealtimeConnection:
    """A live client connection and the rooms it joined."""
    connection_id: str
    websocket: Any  # WebSocket object
    rooms: Set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    window_started: float = 0.0
    window_count: int = 0
    user_id: Optional[str] = None  # set by the first join-user-room


class RealtimeHub:
    """Connection registry plus room -> connection ids index.

    Every broadcast iterates over a snapshot of the member set, so sends that
    drop a failed connection never mutate the set being walked.
    """

    def __init__(
        self,
        max_connections: int = 1000,
        rate_limit: int = 100,
        rate_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.max_connections = max_connections
        self.rate_limit = rate_limit
        self.rate_window = rate_window
        self.metrics = metrics
        self._clock = clock
        self.logger = get_logger("gateway.realtime.hub")

        self.connections: Dict[str, RealtimeConnection] = {}
        self.rooms: Dict[str, Set[str]] = {}  # room -> connection_ids

        self.counters = {
            "total_connections": 0,
            "rejected_connections": 0,
            "peak_connections": 0,
            "messages_received": 0,
            "messages_sent": 0,
            "rate_limited": 0,
        }

    def add_connection(self, websocket: Any) -> RealtimeConnection:
        """Register an accepted socket; raises ``ConnectionLimitError`` at capacity."""
        if len(self.connections) >= self.max_connections:
            self.counters["rejected_connections"] += 1
            self.logger.warning("Realtime connection refused", max_connections=self.max_connections)
            raise ConnectionLimitError(self.max_connections)

        connection = RealtimeConnection(
            connection_id=uuid.uuid4().hex,
            websocket=websocket,
            window_started=self._clock(),
        )
        self.connections[connection.connection_id] = connection

        self.counters["total_connections"] += 1
        self.counters["peak_connections"] = max(self.counters["peak_connections"], len(self.connections))
        self._publish_connection_count()
        self.logger.info(
            "Realtime connection added",
            connection_id=connection.connection_id,
            total_connections=len(self.connections)
        )
        return connection

    def remove_connection(self, connection_id: str) -> bool:
        """Forget a connection and every room membership it held."""
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return False

        for room in connection.rooms:
            members = self.rooms.get(room)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    del self.rooms[room]

        self._publish_connection_count()
        self.logger.info(
            "Realtime connection removed",
            connection_id=connection_id,
            total_connections=len(self.connections)
        )
        return True

    def join(self, connection_id: str, room: str) -> bool:
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        connection.rooms.add(room)
        self.rooms.setdefault(room, set()).add(connection_id)
        self.logger.info("Connection joined room", connection_id=connection_id, room=room,
                         members=len(self.rooms[room]))
        return True

    def leave(self, connection_id: str, room: str) -> bool:
        connection = self.connections.get(connection_id)
        if connection is None or room not in connection.rooms:
            return False
        connection.rooms.discard(room)
        members = self.rooms.get(room)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self.rooms[room]
        self.logger.info("Connection left room", connection_id=connection_id, room=room)
        return True

    def members(self, room: str) -> Set[str]:
        return set(self.rooms.get(room, ()))

    def bind_user(self, connection_id: str, user_id: str) -> bool:
        """Attach a user identity to a connection.

        Returns True when this makes the user come online, i.e. no other
        live connection already carries the same user id. A connection keeps
        the first identity it was bound to.
        """
        connection = self.connections.get(connection_id)
        if connection is None or connection.user_id is not None:
            return False
        came_online = not self.user_connections(user_id)
        connection.user_id = user_id
        if came_online:
            self.logger.info("User online", connection_id=connection_id, user_id=user_id)
        return came_online

    def user_connections(self, user_id: str) -> Set[str]:
        return {
            connection_id
            for connection_id, connection in self.connections.items()
            if connection.user_id == user_id
        }

    def online_users(self) -> List[Dict[str, Any]]:
        """One entry per user with at least one live connection."""
        users: Dict[str, Dict[str, Any]] = {}
        for connection in self.connections.values():
            if connection.user_id is None:
                continue
            entry = users.get(connection.user_id)
            if entry is None:
                users[connection.user_id] = {
                    "userId": connection.user_id,
                    "connections": 1,
                    "connectedAt": connection.connected_at.isoformat(),
                }
            else:
                entry["connections"] += 1
                entry["connectedAt"] = min(entry["connectedAt"], connection.connected_at.isoformat())
        return list(users.values())

    def allow_message(self, connection_id: str) -> bool:
        """Fixed one-window rate limit per connection."""
        connection = self.connections.get(connection_id)
        if connection is None:
            return False

        now = self._clock()
        if now - connection.window_started >= self.rate_window:
            connection.window_started = now
            connection.window_count = 0

        if connection.window_count >= self.rate_limit:
            self.counters["rate_limited"] += 1
            return False

        connection.window_count += 1
        self.counters["messages_received"] += 1
        return True

    async def send(self, connection_id: str, event: str, data: Any) -> bool:
        """Deliver one event; a failed send drops the connection."""
        connection = self.connections.get(connection_id)
        if connection is None:
            return False

        try:
            await connection.websocket.send_text(json.dumps({"event": event, "data": data}, default=str))
        except Exception as e:
            self.logger.warning(
                "Failed to send message to connection",
                connection_id=connection_id,
                realtime_event=event,
                error=str(e)
            )
            self.remove_connection(connection_id)
            return False

        self.counters["messages_sent"] += 1
        if self.metrics:
            self.metrics.record_realtime_message("out", event)
        return True

    async def _deliver(self, connection_ids: Iterable[str], event: str, data: Any) -> int:
        sent = 0
        for connection_id in connection_ids:
            if await self.send(connection_id, event, data):
                sent += 1
        return sent

    async def broadcast_to_room(self, room: str, event: str, data: Any,
                                exclude: Optional[Set[str]] = None) -> int:
        """Send to the current members of ``room``; returns the delivered count."""
        recipients = self.members(room) - (exclude or set())
        sent = await self._deliver(recipients, event, data)
        self.logger.debug("Broadcast to room", room=room, realtime_event=event, sent_count=sent)
        return sent

    async def broadcast_to_all(self, event: str, data: Any, exclude: Optional[Set[str]] = None) -> int:
        recipients = set(self.connections) - (exclude or set())
        sent = await self._deliver(recipients, event, data)
        self.logger.debug("Broadcast to all", realtime_event=event, sent_count=sent)
        return sent

    async def send_to_user(self, user_id: str, event: str, data: Any) -> int:
        """Send to every live connection bound to ``user_id``."""
        sent = await self._deliver(self.user_connections(user_id), event, data)
        self.logger.debug("Sent to user", user_id=user_id, realtime_event=event, sent_count=sent)
        return sent

    def _publish_connection_count(self) -> None:
        if self.metrics:
            self.metrics.set_realtime_connections(len(self.connections))

    def get_stats(self) -> Dict[str, Any]:
        """Connection and room statistics."""
        return {
            "active_connections": len(self.connections),
            "max_connections": self.max_connections,
            "rooms": {room: len(members) for room, members in self.rooms.items()},
            "room_count": len(self.rooms),
            "online_users": len({c.user_id for c in self.connections.values() if c.user_id is not None}),
            **self.counters,
        }

    async def close_all(self) -> None:
        for connection_id in list(self.connections):
            connection = self.connections.get(connection_id)
            self.remove_connection(connection_id)
            try:
                await connection.websocket.close()
            except Exception as e:
                self.logger.debug("Close failed during shutdown", connection_id=connection_id, error=str(e))
