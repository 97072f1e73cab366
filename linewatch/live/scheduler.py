"""
Live Update Scheduler.

Owns per-sport polling and subscriber fan-out:

    Idle --first subscribe--> Polling --last unsubscribe--> Grace --timeout--> Idle
                                 ^                            |
                                 +------- resubscribe --------+

While Polling, one asyncio task per sport runs a cycle immediately and then
every `odds_interval_seconds`. Cycles for a sport never overlap: the loop is
sequential, so a slow cycle delays the next tick. During Grace the snapshot
and movement history are kept so a returning subscriber gets data instantly.

A cycle: fetch (hard timeout) -> best odds + opportunities + movement record
per game -> diff against the previous cycle -> atomic store publish ->
snapshot/movement events -> alerts. A failed cycle publishes nothing and
the previous snapshot stays readable.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import structlog

from config.settings import Settings
from linewatch.engine.arbitrage import detect_opportunities
from linewatch.engine.consensus import compute_best_odds
from linewatch.engine.movement import LineMovementTracker, diff_quotes
from linewatch.errors import IngestionError, UnknownSport, UpstreamUnavailable
from linewatch.feeds.base import IngestionResult
from linewatch.feeds.fallback import FallbackOddsSource
from linewatch.live.events import (
    AlertKind,
    EventPriority,
    EventType,
    ServerEvent,
    SubscriptionFilters,
    render_game_update,
    render_movement,
    render_snapshot,
)
from linewatch.live.store import OddsStore, SportSnapshot
from linewatch.models.schemas import (
    BestOdds,
    Movement,
    Opportunity,
    OpportunityKind,
    QuoteMovement,
)
from linewatch.models.sportsbooks import SportsbookRegistry

logger = structlog.get_logger()


class Subscriber(ABC):
    """A client that receives pushed events."""

    def __init__(self, client_id: str):
        self.client_id = client_id

    @abstractmethod
    async def send(self, event: ServerEvent) -> None:
        """Deliver one event. May raise if the client is gone."""


@dataclass
class Subscription:
    subscriber: Subscriber
    sport: str
    filters: SubscriptionFilters = field(default_factory=SubscriptionFilters)
    alert_on_movement: bool = True
    subscribed_at_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    # Game ids that also get a game_update push each cycle
    tracked_games: set[str] = field(default_factory=set)

    @property
    def client_id(self) -> str:
        return self.subscriber.client_id

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "sport": self.sport,
            "filters": self.filters.model_dump(by_alias=True, mode="json"),
            "alert_on_movement": self.alert_on_movement,
            "subscribed_at_ms": self.subscribed_at_ms,
            "tracked_games": sorted(self.tracked_games),
        }


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    GRACE = "grace"


def _opportunity_key(opportunity: Opportunity) -> tuple:
    if opportunity.kind is OpportunityKind.ARBITRAGE:
        return (
            opportunity.kind,
            opportunity.game_id,
            opportunity.market,
            tuple((leg.side, leg.bookmaker, leg.price) for leg in opportunity.legs),
        )
    return (
        opportunity.kind,
        opportunity.game_id,
        opportunity.market,
        opportunity.bookmaker_a,
        opportunity.bookmaker_b,
        opportunity.line_a,
        opportunity.line_b,
    )


class LiveUpdateScheduler:
    """
    Polls subscribed sports and pushes updates to their subscribers.

    Usage:
        scheduler = LiveUpdateScheduler(source, OddsStore(), tracker, registry, settings)
        await scheduler.subscribe(subscriber, "basketball_nba", SubscriptionFilters())
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        source: FallbackOddsSource,
        store: OddsStore,
        tracker: LineMovementTracker,
        registry: SportsbookRegistry,
        settings: Settings,
    ):
        self.source = source
        self.store = store
        self.tracker = tracker
        self.registry = registry
        self.settings = settings
        self.logger = logger.bind(component="scheduler")

        # sport -> client_id -> subscription
        self._subscriptions: dict[str, dict[str, Subscription]] = {}
        self._pollers: dict[str, asyncio.Task] = {}
        self._evictions: dict[str, asyncio.Task] = {}

        # Alert dedupe: steam sides currently alerted, opportunities already announced
        self._steam_keys: dict[str, set[tuple]] = {}
        self._opportunity_keys: dict[str, set[tuple]] = {}

        # Stats
        self._cycles = 0
        self._failed_cycles = 0
        self._events_sent = 0
        self._send_failures = 0
        self._alerts_sent = 0
        self._last_cycle_ms = 0
        self._last_cycle_duration_ms = 0

    # =========================================================================
    # Subscriptions
    # =========================================================================

    @property
    def supported_sports(self) -> list[str]:
        return list(self.settings.scheduler.sports)

    def check_sport(self, sport: str) -> str:
        """
        Normalized sport key.

        Raises:
            UnknownSport: sport is not in the supported list
        """
        sport = sport.strip().lower()
        if sport not in self.settings.scheduler.sports:
            raise UnknownSport(sport)
        return sport

    async def subscribe(
        self,
        subscriber: Subscriber,
        sport: str,
        filters: Optional[SubscriptionFilters] = None,
        alert_on_movement: bool = True,
    ) -> Subscription:
        """
        Register a subscriber for a sport.

        Starts polling if this is the sport's first subscriber, cancels a
        pending grace eviction, and pushes the cached snapshot if one exists.

        Raises:
            UnknownSport: sport is not in the supported list
        """
        sport = self.check_sport(sport)
        subscription = Subscription(
            subscriber=subscriber,
            sport=sport,
            filters=filters or SubscriptionFilters(),
            alert_on_movement=alert_on_movement,
        )
        previous = self._subscriptions.get(sport, {}).get(subscriber.client_id)
        if previous is not None:
            subscription.tracked_games = set(previous.tracked_games)
        self._subscriptions.setdefault(sport, {})[subscriber.client_id] = subscription

        eviction = self._evictions.pop(sport, None)
        if eviction is not None:
            eviction.cancel()
            self.logger.info("Grace eviction cancelled", sport=sport)

        if not self.is_polling(sport):
            self._pollers[sport] = asyncio.create_task(self._poll_loop(sport))
            self.logger.info("Polling started", sport=sport)

        self.logger.info(
            "Subscribed",
            client_id=subscriber.client_id,
            sport=sport,
            subscribers=len(self._subscriptions[sport]),
        )

        snapshot = self.store.get(sport)
        if snapshot is not None:
            await self._deliver(subscription, [self._snapshot_event(snapshot, subscription)])

        return subscription

    async def track_game(self, subscriber: Subscriber, sport: str, game_id: str) -> Subscription:
        """
        Follow one game: a game_update push is sent for it after every cycle.

        Subscribes the client to the sport (default filters) if it is not
        subscribed yet. Unsubscribing from the sport drops its tracked games.

        Raises:
            UnknownSport: sport is not in the supported list
        """
        sport = self.check_sport(sport)
        subscription = self._subscriptions.get(sport, {}).get(subscriber.client_id)
        if subscription is None:
            subscription = await self.subscribe(subscriber, sport)
        subscription.tracked_games.add(game_id)
        self.logger.info("Tracking game", client_id=subscriber.client_id, sport=sport, game_id=game_id)
        return subscription

    async def unsubscribe(self, client_id: str, sport: str) -> bool:
        """
        Remove one subscription. Idempotent: returns False if there was none.

        The last subscriber leaving stops polling and starts the grace timer.
        """
        sport = sport.strip().lower()
        subscribers = self._subscriptions.get(sport)
        if not subscribers or client_id not in subscribers:
            return False

        del subscribers[client_id]
        self.logger.info("Unsubscribed", client_id=client_id, sport=sport, subscribers=len(subscribers))

        if not subscribers:
            del self._subscriptions[sport]
            await self._stop_polling(sport)
            # A subscribe may have landed while the poller was shutting down
            if self._subscriptions.get(sport):
                return True
            self._evictions[sport] = asyncio.create_task(self._evict_after_grace(sport))
        return True

    async def disconnect(self, client_id: str) -> int:
        """Remove every subscription of a client. Returns how many were removed."""
        sports = [
            sport for sport, subscribers in self._subscriptions.items()
            if client_id in subscribers
        ]
        for sport in sports:
            await self.unsubscribe(client_id, sport)
        return len(sports)

    def subscriptions(self, sport: Optional[str] = None) -> list[Subscription]:
        if sport is not None:
            return list(self._subscriptions.get(sport, {}).values())
        return [
            subscription
            for subscribers in self._subscriptions.values()
            for subscription in subscribers.values()
        ]

    def _is_subscribed(self, subscription: Subscription) -> bool:
        current = self._subscriptions.get(subscription.sport, {}).get(subscription.client_id)
        return current is subscription

    # =========================================================================
    # Polling lifecycle
    # =========================================================================

    def is_polling(self, sport: str) -> bool:
        task = self._pollers.get(sport)
        return task is not None and not task.done()

    def state(self, sport: str) -> PollerState:
        if self.is_polling(sport):
            return PollerState.POLLING
        if sport in self._evictions:
            return PollerState.GRACE
        return PollerState.IDLE

    async def _poll_loop(self, sport: str) -> None:
        interval = self.settings.scheduler.odds_interval_seconds
        while True:
            started = time.monotonic()
            try:
                await self.run_cycle(sport)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._failed_cycles += 1
                self.logger.error("Cycle crashed", sport=sport, error=str(e), error_type=type(e).__name__)
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, interval - elapsed))

    async def _stop_polling(self, sport: str) -> None:
        task = self._pollers.pop(sport, None)
        if task is None:
            return
        task.cancel()
        # An unsubscribe issued from inside the poller cannot wait on itself
        if task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)
        self.logger.info("Polling stopped", sport=sport)

    async def _evict_after_grace(self, sport: str) -> None:
        await asyncio.sleep(self.settings.scheduler.cache_grace_seconds)
        if self._evictions.get(sport) is asyncio.current_task():
            del self._evictions[sport]
        if self._subscriptions.get(sport) or self.is_polling(sport):
            self.logger.info("Grace eviction skipped, sport is active", sport=sport)
            return
        self._evict_sport(sport)

    def _evict_sport(self, sport: str) -> None:
        self.store.evict(sport)
        evicted = self.tracker.evict_sport(sport)
        self._steam_keys.pop(sport, None)
        self._opportunity_keys.pop(sport, None)
        self.logger.info("Sport cache evicted", sport=sport, games=evicted)

    # =========================================================================
    # Cycle
    # =========================================================================

    async def _fetch(self, sport: str) -> IngestionResult:
        """
        Fetch through the fallback chain under the hard cycle timeout.

        Raises:
            IngestionError: every provider failed or the fetch timed out
        """
        timeout = self.settings.scheduler.fetch_timeout_seconds
        try:
            return await asyncio.wait_for(self.source.fetch(sport), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise UpstreamUnavailable(f"Fetch timed out after {timeout}s") from e

    def _compute_snapshot(self, sport: str, result: IngestionResult, now_ms: int) -> SportSnapshot:
        detection = self.settings.detection
        best_odds: dict[str, BestOdds] = {}
        opportunities: list[Opportunity] = []
        for game in result.games:
            best = compute_best_odds(game, detection.consensus_tolerance)
            best_odds[game.game_id] = best
            opportunities.extend(detect_opportunities(game, best, detection.middle_threshold))
        return SportSnapshot(
            sport=sport,
            games=tuple(result.games),
            best_odds=best_odds,
            opportunities=tuple(opportunities),
            source=result.source,
            updated_at_ms=now_ms,
        )

    async def fetch_snapshot(self, sport: str) -> SportSnapshot:
        """
        One-off fetch for a sport nobody is polling.

        The result is not published, recorded or broadcast.

        Raises:
            UnknownSport: sport is not in the supported list
            IngestionError: odds could not be fetched
        """
        sport = self.check_sport(sport)
        result = await self._fetch(sport)
        return self._compute_snapshot(sport, result, int(time.time() * 1000))

    async def run_cycle(self, sport: str) -> Optional[SportSnapshot]:
        """
        Run one fetch-compute-publish-broadcast cycle.

        Returns the published snapshot, or None if ingestion failed (the
        previous snapshot stays in the store and nothing is broadcast).
        """
        started = time.monotonic()
        try:
            result = await self._fetch(sport)
        except IngestionError as e:
            self._failed_cycles += 1
            self.logger.warning("Fetch failed, keeping previous snapshot", sport=sport, error=str(e))
            return None

        detection = self.settings.detection
        now_ms = int(time.time() * 1000)
        previous = self.store.get(sport)

        snapshot = self._compute_snapshot(sport, result, now_ms)
        for game in snapshot.games:
            self.tracker.record(game, snapshot.best_odds[game.game_id], now_ms)
        self.tracker.retain(sport, snapshot.best_odds.keys())

        quote_movements = diff_quotes(
            previous.games if previous else [],
            snapshot.games,
            price_threshold=detection.movement_price_threshold,
            line_threshold=detection.movement_line_threshold,
            steam_threshold=detection.steam_threshold,
            timestamp_ms=now_ms,
        )
        movements = [
            movement
            for game_id in snapshot.best_odds
            for movement in self.tracker.get_movements(game_id)
            if any(side is not None and side.change for side in movement.sides.values())
        ]

        self.store.put(snapshot)

        self._cycles += 1
        self._last_cycle_ms = now_ms
        self._last_cycle_duration_ms = int((time.monotonic() - started) * 1000)

        self.logger.info(
            "Cycle complete",
            sport=sport,
            source=result.source,
            games=len(snapshot.games),
            opportunities=len(snapshot.opportunities),
            quote_movements=len(quote_movements),
            duration_ms=self._last_cycle_duration_ms,
        )

        await self._broadcast(snapshot, quote_movements, movements)
        return snapshot

    # =========================================================================
    # Broadcast
    # =========================================================================

    def _snapshot_event(self, snapshot: SportSnapshot, subscription: Subscription) -> ServerEvent:
        return ServerEvent(
            type=EventType.SNAPSHOT,
            sport=snapshot.sport,
            data=render_snapshot(snapshot, subscription.filters),
        )

    def _alert(self, sport: str, kind: AlertKind, payload: dict) -> ServerEvent:
        return ServerEvent(
            type=EventType.ALERT,
            sport=sport,
            priority=EventPriority.HIGH,
            data={"alert": kind.value, **payload},
        )

    def _new_tracked_steam(self, sport: str, movements: list[Movement]) -> list[Movement]:
        """Movements with a side that turned steam since the last cycle."""
        previous = self._steam_keys.get(sport, set())
        current: set[tuple] = set()
        fresh: list[Movement] = []
        for movement in movements:
            is_new = False
            for side, side_movement in movement.sides.items():
                if side_movement is None or not side_movement.is_steam:
                    continue
                key = (movement.game_id, movement.market, side)
                current.add(key)
                if key not in previous:
                    is_new = True
            if is_new:
                fresh.append(movement)
        self._steam_keys[sport] = current
        return fresh

    def _new_opportunities(self, sport: str, opportunities: tuple[Opportunity, ...]) -> list[Opportunity]:
        previous = self._opportunity_keys.get(sport, set())
        current = {_opportunity_key(opp): opp for opp in opportunities}
        self._opportunity_keys[sport] = set(current)
        return [opp for key, opp in current.items() if key not in previous]

    def _quote_alert_payload(self, movement: QuoteMovement) -> dict:
        payload = movement.to_dict()
        book = self.registry.find(movement.bookmaker)
        payload["bookmaker_name"] = book.name if book else movement.bookmaker
        return payload

    async def _broadcast(
        self,
        snapshot: SportSnapshot,
        quote_movements: list[QuoteMovement],
        movements: list[Movement],
    ) -> None:
        sport = snapshot.sport
        steam_quotes = [qm for qm in quote_movements if qm.is_steam]
        tracked_steam = self._new_tracked_steam(sport, movements)
        new_opportunities = self._new_opportunities(sport, snapshot.opportunities)

        subscriptions = self.subscriptions(sport)
        if not subscriptions:
            return

        deliveries = []
        for subscription in subscriptions:
            filters = subscription.filters
            visible = {game.game_id for game in snapshot.games if filters.accepts_game(game)}
            markets = filters.markets

            events = [self._snapshot_event(snapshot, subscription)]

            movement_data = render_movement(snapshot, quote_movements, movements, filters)
            if movement_data is not None:
                events.append(ServerEvent(type=EventType.MOVEMENT, sport=sport, data=movement_data))

            if subscription.alert_on_movement:
                for qm in steam_quotes:
                    if qm.game_id in visible and qm.market in markets and filters.accepts_bookmaker(qm.bookmaker):
                        events.append(self._alert(sport, AlertKind.STEAM_MOVE, self._quote_alert_payload(qm)))
                for movement in tracked_steam:
                    if movement.game_id in visible and movement.market in markets:
                        events.append(self._alert(sport, AlertKind.TRACKED_STEAM, movement.to_dict()))

            if filters.show_arbitrage:
                for opp in new_opportunities:
                    if opp.game_id in visible and opp.market in markets:
                        kind = AlertKind.ARBITRAGE if opp.kind is OpportunityKind.ARBITRAGE else AlertKind.MIDDLE
                        events.append(self._alert(sport, kind, opp.to_dict()))

            for game_id in sorted(subscription.tracked_games):
                game_data = render_game_update(snapshot, game_id, movements, filters)
                if game_data is not None:
                    events.append(ServerEvent(type=EventType.GAME_UPDATE, sport=sport, data=game_data))

            deliveries.append(self._deliver(subscription, events))

        await asyncio.gather(*deliveries, return_exceptions=True)

    async def _deliver(self, subscription: Subscription, events: list[ServerEvent]) -> None:
        """Send events in order; a failing client never blocks the others."""
        for event in events:
            if not self._is_subscribed(subscription):
                return
            try:
                await subscription.subscriber.send(event)
            except Exception as e:
                self._send_failures += 1
                self.logger.warning(
                    "Send failed",
                    client_id=subscription.client_id,
                    sport=subscription.sport,
                    event=event.type.value,
                    error=str(e),
                )
                return
            self._events_sent += 1
            if event.type is EventType.ALERT:
                self._alerts_sent += 1

    # =========================================================================
    # Reads / admin
    # =========================================================================

    def get_snapshot(self, sport: str) -> Optional[SportSnapshot]:
        """
        Latest published snapshot for a sport, or None if none is cached.

        Raises:
            UnknownSport: sport is not in the supported list
        """
        return self.store.get(self.check_sport(sport))

    def invalidate_cache(self) -> int:
        """Drop every cached snapshot and movement history. Polling sports refill on their next cycle."""
        cleared = self.store.clear()
        self.tracker.clear()
        self._steam_keys.clear()
        self._opportunity_keys.clear()
        self.logger.info("Cache invalidated", sports=cleared)
        return cleared

    async def stop(self) -> None:
        """Cancel all polling and grace timers and drop subscriptions."""
        tasks = list(self._pollers.values()) + list(self._evictions.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pollers.clear()
        self._evictions.clear()
        self._subscriptions.clear()
        self.logger.info("Scheduler stopped", cancelled_tasks=len(tasks))

    def get_metrics(self) -> dict:
        clients = {sub.client_id for sub in self.subscriptions()}
        return {
            "active_sports": sorted(sport for sport in self._pollers if self.is_polling(sport)),
            "grace_sports": sorted(self._evictions),
            "subscriptions": len(self.subscriptions()),
            "clients": len(clients),
            "cycles": self._cycles,
            "failed_cycles": self._failed_cycles,
            "events_sent": self._events_sent,
            "alerts_sent": self._alerts_sent,
            "send_failures": self._send_failures,
            "last_cycle_ms": self._last_cycle_ms,
            "last_cycle_duration_ms": self._last_cycle_duration_ms,
            "cached_sports": self.store.sports(),
            "games_with_history": len(self.tracker),
            "source": self.source.get_metrics(),
        }
