"""
Realtime event hub (WebSocket rooms and fan-out).
"""

from .handlers import SERVER_EVENTS, RealtimeEventHandler
from .hub import RealtimeConnection, RealtimeHub

__all__ = ["SERVER_EVENTS", "RealtimeConnection", "RealtimeEventHandler", "RealtimeHub"]
