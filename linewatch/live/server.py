"""
WebSocket transport for live odds.

Each connection becomes a Subscriber. Client actions are parsed and
dispatched to the scheduler; replies and pushes are JSON text frames.
Malformed messages get an `error` event and the connection stays open.
"""

import hmac
import uuid
from typing import Optional

import structlog
import websockets
from websockets.exceptions import ConnectionClosed

from config.settings import ServerSettings
from linewatch.errors import IngestionError, UnknownSport
from linewatch.live.events import (
    ErrorCode,
    EventType,
    GetBestOddsMessage,
    GetLineMovementMessage,
    GetLiveOddsMessage,
    InvalidateCacheMessage,
    PingMessage,
    ServerEvent,
    SubscribeMessage,
    SubscriptionFilters,
    TrackGameMessage,
    UnsubscribeMessage,
    error_event,
    parse_client_message,
    render_game_update,
    render_snapshot,
)
from linewatch.live.scheduler import LiveUpdateScheduler, Subscriber

logger = structlog.get_logger()

# Most recent snapshots returned by get_line_movement
HISTORY_REPLY_LIMIT = 20


class WebSocketSubscriber(Subscriber):
    """Subscriber backed by one WebSocket connection."""

    def __init__(self, websocket, client_id: Optional[str] = None):
        super().__init__(client_id or uuid.uuid4().hex[:12])
        self.websocket = websocket

    async def send(self, event: ServerEvent) -> None:
        await self.websocket.send(event.to_json().decode())


class OddsWebSocketServer:
    """
    Serves the live odds protocol.

    Usage:
        server = OddsWebSocketServer(scheduler, settings.server)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(self, scheduler: LiveUpdateScheduler, config: ServerSettings):
        self.scheduler = scheduler
        self.config = config
        self.logger = logger.bind(component="ws_server")

        self._server = None
        self._connections = 0
        self._messages = 0
        self._invalid_messages = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        self._server = await websockets.serve(
            self.handler,
            self.config.host,
            self.config.port,
            max_size=self.config.max_message_bytes,
        )
        self.logger.info("WebSocket server listening", host=self.config.host, port=self.config.port)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self.logger.info("WebSocket server stopped")

    async def handler(self, websocket) -> None:
        """One connection: greet, dispatch messages until close, then clean up."""
        subscriber = WebSocketSubscriber(websocket)
        self._connections += 1
        self.logger.info("Client connected", client_id=subscriber.client_id)

        try:
            await subscriber.send(ServerEvent(
                type=EventType.CONNECTED,
                data={
                    "client_id": subscriber.client_id,
                    "sports": self.scheduler.supported_sports,
                    "sportsbooks": len(self.scheduler.registry),
                    "update_interval_seconds": self.scheduler.settings.scheduler.odds_interval_seconds,
                },
            ))
            async for message in websocket:
                await self.handle_message(subscriber, message)
        except ConnectionClosed:
            pass
        finally:
            removed = await self.scheduler.disconnect(subscriber.client_id)
            self._connections -= 1
            self.logger.info("Client disconnected", client_id=subscriber.client_id, subscriptions=removed)

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def handle_message(self, subscriber: Subscriber, raw) -> None:
        """Parse and answer one client message."""
        self._messages += 1
        try:
            message = parse_client_message(raw)
        except ValueError as e:
            self._invalid_messages += 1
            self.logger.debug("Invalid client message", client_id=subscriber.client_id, error=str(e))
            await subscriber.send(error_event(ErrorCode.INVALID_MESSAGE, "Invalid message"))
            return

        try:
            if isinstance(message, SubscribeMessage):
                await self._on_subscribe(subscriber, message)
            elif isinstance(message, UnsubscribeMessage):
                await self._on_unsubscribe(subscriber, message)
            elif isinstance(message, GetLiveOddsMessage):
                await self._on_get_live_odds(subscriber, message)
            elif isinstance(message, GetBestOddsMessage):
                await self._on_get_best_odds(subscriber, message)
            elif isinstance(message, GetLineMovementMessage):
                await self._on_get_line_movement(subscriber, message)
            elif isinstance(message, TrackGameMessage):
                await self._on_track_game(subscriber, message)
            elif isinstance(message, PingMessage):
                await subscriber.send(ServerEvent(
                    type=EventType.PONG,
                    data={"metrics": self.scheduler.get_metrics()},
                ))
            elif isinstance(message, InvalidateCacheMessage):
                await self._on_invalidate_cache(subscriber, message)
        except UnknownSport as e:
            await subscriber.send(error_event(ErrorCode.UNKNOWN_SPORT, str(e), sport=e.sport))

    async def _on_subscribe(self, subscriber: Subscriber, message: SubscribeMessage) -> None:
        # Validate all sports first so a bad entry subscribes to nothing
        for sport in message.sports:
            self.scheduler.check_sport(sport)

        subscribed = []
        for sport in message.sports:
            subscription = await self.scheduler.subscribe(
                subscriber,
                sport,
                filters=message.filters,
                alert_on_movement=message.alert_on_movement,
            )
            subscribed.append(subscription.sport)

        await subscriber.send(ServerEvent(
            type=EventType.SUBSCRIBED,
            data={
                "sports": subscribed,
                "filters": message.filters.model_dump(by_alias=True, mode="json"),
                "alert_on_movement": message.alert_on_movement,
            },
        ))

    async def _on_unsubscribe(self, subscriber: Subscriber, message: UnsubscribeMessage) -> None:
        for sport in message.sports:
            await self.scheduler.unsubscribe(subscriber.client_id, sport)
        await subscriber.send(ServerEvent(
            type=EventType.UNSUBSCRIBED,
            data={"sports": [sport.strip().lower() for sport in message.sports]},
        ))

    async def _on_get_live_odds(self, subscriber: Subscriber, message: GetLiveOddsMessage) -> None:
        sport = self.scheduler.check_sport(message.sport)
        snapshot = self.scheduler.get_snapshot(sport)
        cached = snapshot is not None
        if snapshot is None:
            # Nobody polls this sport: fetch once without caching
            try:
                snapshot = await self.scheduler.fetch_snapshot(sport)
            except IngestionError as e:
                self.logger.warning("Live odds fetch failed", sport=sport, error=str(e))
                await subscriber.send(error_event(
                    ErrorCode.UPSTREAM_UNAVAILABLE, "Odds are unavailable right now", sport=sport
                ))
                return

        data = render_snapshot(snapshot, SubscriptionFilters())
        if message.game_id is not None:
            data["games"] = [g for g in data["games"] if g["game_id"] == message.game_id]
            data["opportunities"] = [
                o for o in data["opportunities"] if o["game_id"] == message.game_id
            ]
        data["cached"] = cached
        await subscriber.send(ServerEvent(type=EventType.LIVE_ODDS, sport=sport, data=data))

    async def _on_get_best_odds(self, subscriber: Subscriber, message: GetBestOddsMessage) -> None:
        snapshot = self.scheduler.get_snapshot(message.sport)
        best = snapshot.best_odds.get(message.game_id) if snapshot else None
        if best is None:
            await subscriber.send(error_event(
                ErrorCode.NOT_FOUND, f"No odds for game {message.game_id}", sport=message.sport
            ))
            return
        await subscriber.send(ServerEvent(
            type=EventType.BEST_ODDS,
            sport=snapshot.sport,
            data={
                "game_id": message.game_id,
                "best_odds": best.to_dict(),
                "opportunities": [o.to_dict() for o in snapshot.opportunities_for(message.game_id)],
            },
        ))

    async def _on_get_line_movement(self, subscriber: Subscriber, message: GetLineMovementMessage) -> None:
        sport = self.scheduler.check_sport(message.sport)
        snapshot = self.scheduler.get_snapshot(sport)
        # History is keyed by game id only, so the game must belong to this sport
        if snapshot is None or snapshot.get_game(message.game_id) is None:
            await subscriber.send(error_event(
                ErrorCode.NOT_FOUND, f"No history for game {message.game_id}", sport=sport
            ))
            return

        tracker = self.scheduler.tracker
        detection = self.scheduler.settings.detection
        market = message.market
        movement = tracker.get_movement(message.game_id, market)
        quote_movements = tracker.bookmaker_movements(
            message.game_id,
            market=market,
            bookmaker=message.bookmaker,
            price_threshold=detection.movement_price_threshold,
            line_threshold=detection.movement_line_threshold,
        )

        history = []
        for snap in tracker.history(message.game_id, limit=HISTORY_REPLY_LIMIT):
            entry = {
                "timestamp_ms": snap.timestamp_ms,
                "bookmaker_count": snap.bookmaker_count,
                "best_odds": snap.best_odds.to_dict(markets={market}),
            }
            if message.bookmaker is not None:
                quote = snap.quotes.get(message.bookmaker)
                sides = quote.markets.get(market) if quote else None
                entry["quote"] = {side: price.to_dict() for side, price in sides.items()} if sides else None
            history.append(entry)

        await subscriber.send(ServerEvent(
            type=EventType.LINE_MOVEMENT,
            sport=snapshot.sport,
            data={
                "game_id": message.game_id,
                "market": market.value,
                "bookmaker": message.bookmaker,
                "movement": movement.to_dict() if movement else None,
                "quote_movements": [qm.to_dict() for qm in quote_movements],
                "history": history,
            },
        ))

    async def _on_track_game(self, subscriber: Subscriber, message: TrackGameMessage) -> None:
        subscription = await self.scheduler.track_game(subscriber, message.sport, message.game_id)
        snapshot = self.scheduler.store.get(subscription.sport)
        game_data = None
        if snapshot is not None:
            game_data = render_game_update(
                snapshot,
                message.game_id,
                self.scheduler.tracker.get_movements(message.game_id),
                subscription.filters,
            )
        await subscriber.send(ServerEvent(
            type=EventType.TRACKING_CONFIRMED,
            sport=subscription.sport,
            data={
                "game_id": message.game_id,
                "tracked_games": sorted(subscription.tracked_games),
                "current": game_data,
            },
        ))

    async def _on_invalidate_cache(self, subscriber: Subscriber, message: InvalidateCacheMessage) -> None:
        admin_token = self.config.admin_token
        if not admin_token or not hmac.compare_digest(message.token.encode(), admin_token.encode()):
            self.logger.warning("Rejected cache invalidation", client_id=subscriber.client_id)
            await subscriber.send(error_event(ErrorCode.UNAUTHORIZED, "Invalid admin token"))
            return
        cleared = self.scheduler.invalidate_cache()
        await subscriber.send(ServerEvent(type=EventType.CACHE_INVALIDATED, data={"sports_cleared": cleared}))

    def get_metrics(self) -> dict:
        return {
            "connections": self._connections,
            "messages": self._messages,
            "invalid_messages": self._invalid_messages,
        }
