"""
Realtime message handlers: client events and server-originated emits.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .hub import RealtimeHub


# Events upstream services may push through the gateway.
SERVER_EVENTS = frozenset({
    "score-updated",
    "leaderboard-update",
    "dashboard-stats-update",
    "comment-added",
})


@dataclass
class RealtimeMessage:
    """Inbound frame wrapper."""
    event: str
    data: Any
    connection_id: str


def _field(data: Any, name: str) -> Optional[str]:
    """``data[name]`` for object payloads, the payload itself for scalars."""
    if isinstance(data, dict):
        value = data.get(name)
    else:
        value = data
    if value is None or isinstance(value, (dict, list)) or value == "":
        return None
    return str(value)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RealtimeEventHandler:
    """Parses client frames and routes them by event name."""

    def __init__(self, hub: RealtimeHub, metrics: Optional[MetricsCollector] = None):
        self.hub = hub
        self.metrics = metrics
        self.logger = get_logger("gateway.realtime.handler")
        self.handlers = {
            "join-user-room": self._handle_join_user_room,
            "join-quiz-room": self._handle_join_quiz_room,
            "leave-room": self._handle_leave_room,
            "quiz-progress": self._handle_quiz_progress,
            "new-comment": self._handle_new_comment,
            "score-update": self._handle_score_update,
            "ping": self._handle_ping,
        }

    async def handle_message(self, connection_id: str, message_text: str) -> None:
        """Handle one inbound frame. Bad frames are logged and dropped."""
        if not self.hub.allow_message(connection_id):
            self.logger.warning("Realtime rate limit exceeded", connection_id=connection_id)
            await self.hub.send(connection_id, "connect_error", {"message": "Rate limit exceeded"})
            return

        try:
            payload = json.loads(message_text)
        except json.JSONDecodeError as e:
            self.logger.warning("Dropping invalid JSON frame", connection_id=connection_id, error=str(e))
            return

        if not isinstance(payload, dict) or not isinstance(payload.get("event"), str):
            self.logger.warning("Dropping frame without event name", connection_id=connection_id)
            return

        message = RealtimeMessage(
            event=payload["event"],
            data=payload.get("data"),
            connection_id=connection_id
        )
        handler = self.handlers.get(message.event)
        if handler is None:
            # client-chosen names never become label values
            if self.metrics:
                self.metrics.record_realtime_message("in", "unknown")
            self.logger.warning("Dropping unknown realtime event", connection_id=connection_id,
                                realtime_event=message.event)
            return

        if self.metrics:
            self.metrics.record_realtime_message("in", message.event)
        await handler(message)

    async def handle_disconnect(self, connection_id: str) -> None:
        """Drop the connection and announce the user offline once their last socket closes."""
        connection = self.hub.connections.get(connection_id)
        user_id = connection.user_id if connection else None
        self.hub.remove_connection(connection_id)
        if user_id is not None and not self.hub.user_connections(user_id):
            self.logger.info("User offline", connection_id=connection_id, user_id=user_id)
            await self.hub.broadcast_to_all("userOffline", {"userId": user_id, "timestamp": _now()})

    async def _handle_join_user_room(self, message: RealtimeMessage) -> None:
        user_id = _field(message.data, "userId")
        if user_id is None:
            self.logger.warning("join-user-room without userId", connection_id=message.connection_id)
            return
        self.hub.join(message.connection_id, f"user-{user_id}")
        if self.hub.bind_user(message.connection_id, user_id):
            await self.hub.broadcast_to_all(
                "userOnline",
                {"userId": user_id, "timestamp": _now()},
                exclude={message.connection_id},
            )

    async def _handle_join_quiz_room(self, message: RealtimeMessage) -> None:
        quiz_id = _field(message.data, "quizId")
        if quiz_id is None:
            self.logger.warning("join-quiz-room without quizId", connection_id=message.connection_id)
            return
        self.hub.join(message.connection_id, f"quiz-{quiz_id}")

    async def _handle_leave_room(self, message: RealtimeMessage) -> None:
        room = _field(message.data, "room")
        if room is not None:
            self.hub.leave(message.connection_id, room)

    async def _handle_quiz_progress(self, message: RealtimeMessage) -> None:
        quiz_id = _field(message.data, "quizId") if isinstance(message.data, dict) else None
        if quiz_id is None:
            return
        await self.hub.broadcast_to_room(
            f"quiz-{quiz_id}",
            "quiz-progress-update",
            message.data,
            exclude={message.connection_id},
        )

    async def _handle_new_comment(self, message: RealtimeMessage) -> None:
        quiz_id = _field(message.data, "quizId") if isinstance(message.data, dict) else None
        if quiz_id is None:
            return
        await self.hub.broadcast_to_room(f"quiz-{quiz_id}", "comment-added", message.data)

    async def _handle_score_update(self, message: RealtimeMessage) -> None:
        if not isinstance(message.data, dict):
            return
        user_id = _field(message.data, "userId")
        if user_id is not None:
            await self.hub.broadcast_to_room(f"user-{user_id}", "score-updated", message.data)
        await self.hub.broadcast_to_all("dashboard-stats-update", {"type": "score", "data": message.data})

    async def _handle_ping(self, message: RealtimeMessage) -> None:
        await self.hub.send(message.connection_id, "pong", {
            "timestamp": _now(),
            "data": message.data,
        })

    async def emit(self, event: str, data: Any, room: Optional[str] = None,
                   user_id: Optional[str] = None) -> Dict[str, Any]:
        """Push a server-originated event to one user, one room or every connection."""
        if event not in SERVER_EVENTS:
            raise ValidationError(
                f"Unsupported realtime event '{event}'",
                details={"allowed": sorted(SERVER_EVENTS)}
            )
        if user_id:
            delivered = await self.hub.send_to_user(user_id, event, data)
        elif room:
            delivered = await self.hub.broadcast_to_room(room, event, data)
        else:
            delivered = await self.hub.broadcast_to_all(event, data)
        self.logger.info("Server event emitted", realtime_event=event, room=room,
                         user_id=user_id, delivered=delivered)
        return {"event": event, "room": room, "userId": user_id, "delivered": delivered}
