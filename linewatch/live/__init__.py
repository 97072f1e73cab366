"""
Live layer: snapshot store, scheduler and WebSocket transport.
"""

from linewatch.live.store import OddsStore, SportSnapshot
from linewatch.live.events import (
    ServerEvent,
    EventType,
    SubscriptionFilters,
    parse_client_message,
)
from linewatch.live.scheduler import (
    LiveUpdateScheduler,
    PollerState,
    Subscriber,
    Subscription,
)
from linewatch.live.server import OddsWebSocketServer, WebSocketSubscriber

__all__ = [
    "OddsStore",
    "SportSnapshot",
    "ServerEvent",
    "EventType",
    "SubscriptionFilters",
    "parse_client_message",
    "LiveUpdateScheduler",
    "PollerState",
    "Subscriber",
    "Subscription",
    "OddsWebSocketServer",
    "WebSocketSubscriber",
]
