"""Tests for the WebSocket protocol handling and wire messages."""

import asyncio

import orjson
import pytest

from config.settings import SchedulerSettings, ServerSettings, Settings
from linewatch.engine.movement import LineMovementTracker
from linewatch.feeds.fallback import FallbackOddsSource
from linewatch.live.events import (
    EventType,
    GetLineMovementMessage,
    ServerEvent,
    SubscribeMessage,
    parse_client_message,
)
from linewatch.live.scheduler import LiveUpdateScheduler
from linewatch.live.server import OddsWebSocketServer
from linewatch.live.store import OddsStore
from linewatch.models.schemas import Market
from linewatch.models.sportsbooks import registry


NBA = "basketball_nba"
NFL = "americanfootball_nfl"


@pytest.fixture
def games(make_game, make_quote):
    return [
        make_game(game_id="g1", quotes=[
            make_quote("draftkings", moneyline=(-150, 130)),
            make_quote("fanduel", moneyline=(-145, 125)),
        ]),
        make_game(game_id="g2", quotes=[make_quote("betmgm", moneyline=(-110, -110))]),
    ]


@pytest.fixture
def make_server(scripted_source):
    def build(script) -> OddsWebSocketServer:
        settings = Settings(
            scheduler=SchedulerSettings(sports=[NBA, NFL], odds_interval_seconds=60, fallback_to_synthetic=False),
            server=ServerSettings(admin_token="secret"),
        )
        scheduler = LiveUpdateScheduler(
            source=FallbackOddsSource([scripted_source(script)]),
            store=OddsStore(),
            tracker=LineMovementTracker(),
            registry=registry,
            settings=settings,
        )
        return OddsWebSocketServer(scheduler, settings.server)
    return build


@pytest.fixture
def server(make_server, games):
    return make_server([games])


def send(server, subscriber, message, prime: bool = True):
    """Run one message through the server, optionally after a cycle has populated the cache."""

    async def run():
        if prime:
            await server.scheduler.run_cycle(NBA)
        raw = message if isinstance(message, (str, bytes)) else orjson.dumps(message)
        await server.handle_message(subscriber, raw)
        await server.scheduler.stop()

    asyncio.run(run())
    return subscriber.events[-1]


class TestParseClientMessage:

    def test_subscribe_with_camel_case_filters(self):
        message = parse_client_message(orjson.dumps({
            "action": "subscribe",
            "sports": [NBA],
            "filters": {"minSportsbooks": 3, "marketTypes": ["h2h", "spreads"], "onlyBestOdds": True},
            "alertOnMovement": False,
        }))
        assert isinstance(message, SubscribeMessage)
        assert message.filters.min_sportsbooks == 3
        assert message.filters.markets == {Market.MONEYLINE, Market.SPREAD}
        assert message.filters.only_best_odds is True
        assert message.filters.show_arbitrage is True
        assert message.alert_on_movement is False

    def test_market_alias(self):
        message = parse_client_message('{"action": "get_line_movement", "sport": "x", "gameId": "g", "market": "total"}')
        assert isinstance(message, GetLineMovementMessage)
        assert message.market is Market.TOTALS

    @pytest.mark.parametrize("raw", [
        "not json",
        '{"action": "dance"}',
        '{"action": "subscribe", "sports": []}',
        '{"action": "get_best_odds", "sport": "x"}',
        '{"action": "subscribe", "sports": ["x"], "filters": {"marketTypes": ["corners"]}}',
        "[]",
    ])
    def test_invalid_messages(self, raw):
        with pytest.raises(ValueError):
            parse_client_message(raw)


class TestServerEvent:

    def test_to_json(self):
        event = ServerEvent(type=EventType.PONG, data={"value": None})
        decoded = orjson.loads(event.to_json())

        assert decoded["type"] == "pong"
        assert decoded["priority"] == "normal"
        assert "sport" not in decoded
        # None inside the payload is preserved
        assert decoded["data"] == {"value": None}
        assert isinstance(decoded["timestamp_ms"], int)


class TestHandleMessage:

    def test_ping(self, server, recording_subscriber):
        event = send(server, recording_subscriber(), {"action": "ping"})
        assert event.type is EventType.PONG
        assert event.data["metrics"]["cycles"] == 1

    def test_malformed_message_keeps_connection(self, server, recording_subscriber):
        subscriber = recording_subscriber()
        event = send(server, subscriber, "{{{", prime=False)
        assert event.type is EventType.ERROR
        assert event.data["code"] == "invalid_message"
        assert server.get_metrics()["invalid_messages"] == 1

    def test_subscribe_unknown_sport(self, server, recording_subscriber):
        event = send(server, recording_subscriber(), {"action": "subscribe", "sports": [NBA, "curling"]})
        assert event.type is EventType.ERROR
        assert event.data["code"] == "unknown_sport"
        assert event.sport == "curling"
        # Nothing subscribed when any sport is invalid
        assert server.scheduler.subscriptions() == []

    def test_subscribe_and_unsubscribe(self, server, recording_subscriber):
        subscriber = recording_subscriber()

        async def run():
            await server.handle_message(subscriber, orjson.dumps({"action": "subscribe", "sports": [NBA]}))
            subscribed = len(server.scheduler.subscriptions(NBA))
            await server.handle_message(subscriber, orjson.dumps({"action": "unsubscribe", "sports": [NBA]}))
            # Unsubscribing again still acks
            await server.handle_message(subscriber, orjson.dumps({"action": "unsubscribe", "sports": [NBA]}))
            await server.scheduler.stop()
            return subscribed

        assert asyncio.run(run()) == 1
        acks = [e.type for e in subscriber.events if e.type is not EventType.SNAPSHOT]
        assert acks == [EventType.SUBSCRIBED, EventType.UNSUBSCRIBED, EventType.UNSUBSCRIBED]
        assert server.scheduler.subscriptions() == []

    def test_get_live_odds_for_one_game(self, server, recording_subscriber):
        event = send(server, recording_subscriber(), {"action": "get_live_odds", "sport": NBA, "gameId": "g2"})
        assert event.type is EventType.LIVE_ODDS
        assert [g["game_id"] for g in event.data["games"]] == ["g2"]

    def test_get_live_odds_cold_cache_fetches(self, server, recording_subscriber):
        event = send(server, recording_subscriber(), {"action": "get_live_odds", "sport": NBA}, prime=False)
        assert event.type is EventType.LIVE_ODDS
        assert event.data["cached"] is False
        assert [g["game_id"] for g in event.data["games"]] == ["g1", "g2"]
        # One-off fetch is neither cached nor recorded
        assert server.scheduler.store.get(NBA) is None
        assert len(server.scheduler.tracker) == 0

    def test_get_live_odds_cold_cache_upstream_down(self, make_server, recording_subscriber, upstream_down):
        server = make_server([upstream_down])
        event = send(server, recording_subscriber(), {"action": "get_live_odds", "sport": NBA}, prime=False)
        assert event.type is EventType.ERROR
        assert event.data["code"] == "upstream_unavailable"

    def test_get_live_odds_cached(self, server, recording_subscriber):
        event = send(server, recording_subscriber(), {"action": "get_live_odds", "sport": NBA})
        assert event.data["cached"] is True

    def test_get_best_odds(self, server, recording_subscriber):
        event = send(server, recording_subscriber(), {"action": "get_best_odds", "sport": NBA, "gameId": "g1"})
        assert event.type is EventType.BEST_ODDS
        home = event.data["best_odds"]["markets"]["moneyline"]["home"]["best"]
        assert (home["price"], home["bookmaker"]) == (-145, "fanduel")

    def test_get_best_odds_unknown_game(self, server, recording_subscriber):
        event = send(server, recording_subscriber(), {"action": "get_best_odds", "sport": NBA, "gameId": "nope"})
        assert event.type is EventType.ERROR
        assert event.data["code"] == "not_found"

    def test_get_line_movement(self, server, recording_subscriber):
        event = send(server, recording_subscriber(), {
            "action": "get_line_movement", "sport": NBA, "gameId": "g1", "market": "moneyline",
        })
        assert event.type is EventType.LINE_MOVEMENT
        # One snapshot so far: history but no movement yet
        assert event.data["movement"] is None
        assert len(event.data["history"]) == 1

    def test_get_line_movement_other_sport(self, server, recording_subscriber):
        # g1 only has history under NBA
        event = send(server, recording_subscriber(), {
            "action": "get_line_movement", "sport": NFL, "gameId": "g1",
        })
        assert event.type is EventType.ERROR
        assert event.data["code"] == "not_found"
        assert event.sport == NFL

    def test_get_line_movement_for_bookmaker(self, make_server, recording_subscriber, games, make_game, make_quote):
        moved = [
            make_game(game_id="g1", quotes=[
                make_quote("draftkings", moneyline=(-170, 140)),
                make_quote("fanduel", moneyline=(-145, 125)),
            ]),
            games[1],
        ]
        server = make_server([games, moved])
        subscriber = recording_subscriber()

        async def run():
            await server.scheduler.run_cycle(NBA)
            await server.scheduler.run_cycle(NBA)
            await server.handle_message(subscriber, orjson.dumps({
                "action": "get_line_movement", "sport": NBA, "gameId": "g1", "bookmaker": "draftkings",
            }))
            await server.scheduler.stop()

        asyncio.run(run())
        data = subscriber.events[-1].data

        assert data["bookmaker"] == "draftkings"
        moves = data["quote_movements"]
        assert [(m["side"], m["previous_price"], m["current_price"]) for m in moves] == [
            ("home", -150, -170),
            ("away", 130, 140),
        ]
        assert moves[0]["is_steam"] is True
        assert [h["quote"]["home"]["price"] for h in data["history"]] == [-150, -170]

    def test_get_line_movement_history_is_capped(self, server, recording_subscriber):
        subscriber = recording_subscriber()

        async def run():
            for _ in range(25):
                await server.scheduler.run_cycle(NBA)
            await server.handle_message(subscriber, orjson.dumps({
                "action": "get_line_movement", "sport": NBA, "gameId": "g1",
            }))
            await server.scheduler.stop()

        asyncio.run(run())
        assert len(server.scheduler.tracker.history("g1")) == 25
        assert len(subscriber.events[-1].data["history"]) == 20

    def test_track_game(self, server, recording_subscriber):
        subscriber = recording_subscriber()
        event = send(server, subscriber, {"action": "track_game", "sport": NBA, "gameId": "g1"})

        assert event.type is EventType.TRACKING_CONFIRMED
        assert event.data["game_id"] == "g1"
        assert event.data["tracked_games"] == ["g1"]
        assert event.data["current"]["game"]["game_id"] == "g1"

    def test_track_game_unknown_sport(self, server, recording_subscriber):
        event = send(server, recording_subscriber(), {"action": "track_game", "sport": "curling", "gameId": "g1"})
        assert event.type is EventType.ERROR
        assert event.data["code"] == "unknown_sport"

    def test_invalidate_cache_requires_token(self, server, recording_subscriber):
        event = send(server, recording_subscriber(), {"action": "invalidate_cache", "token": "wrong"})
        assert event.type is EventType.ERROR
        assert event.data["code"] == "unauthorized"
        assert server.scheduler.store.get(NBA) is not None

    def test_invalidate_cache(self, server, recording_subscriber):
        event = send(server, recording_subscriber(), {"action": "invalidate_cache", "token": "secret"})
        assert event.type is EventType.CACHE_INVALIDATED
        assert event.data["sports_cleared"] == 1
        assert server.scheduler.store.get(NBA) is None
