"""Shared fixtures: game builders, fake odds providers and subscribers."""

import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from config.settings import DetectionSettings, SchedulerSettings, Settings
from linewatch.errors import UpstreamUnavailable
from linewatch.feeds.base import OddsSource
from linewatch.live.scheduler import Subscriber
from linewatch.models.schemas import BookmakerQuote, Game, Market, Price
from linewatch.models.sportsbooks import registry as default_registry


def build_quote(
    bookmaker: str,
    moneyline: Optional[tuple[int, int]] = None,
    spread: Optional[tuple[float, int, int]] = None,
    totals: Optional[tuple[float, int, int]] = None,
) -> BookmakerQuote:
    """
    moneyline = (home, away)
    spread = (home_line, home_price, away_price), away line is -home_line
    totals = (line, over_price, under_price)
    """
    markets = {}
    if moneyline:
        markets[Market.MONEYLINE] = {"home": Price(moneyline[0]), "away": Price(moneyline[1])}
    if spread:
        line, home, away = spread
        markets[Market.SPREAD] = {"home": Price(home, line=line), "away": Price(away, line=-line)}
    if totals:
        line, over, under = totals
        markets[Market.TOTALS] = {"over": Price(over, line=line), "under": Price(under, line=line)}

    book = default_registry.find(bookmaker)
    return BookmakerQuote(
        bookmaker=bookmaker,
        name=book.name if book else bookmaker,
        last_update_ms=int(time.time() * 1000),
        markets=markets,
    )


def build_game(
    game_id: str = "game_1",
    sport: str = "basketball_nba",
    quotes: Optional[list[BookmakerQuote]] = None,
    starts_in: timedelta = timedelta(hours=2),
) -> Game:
    game = Game(
        game_id=game_id,
        sport=sport,
        home_team="Los Angeles Lakers",
        away_team="Boston Celtics",
        commence_time=datetime.now(timezone.utc) + starts_in,
    )
    for quote in quotes or []:
        game.quotes[quote.bookmaker] = quote
    return game


@pytest.fixture
def make_quote():
    return build_quote


@pytest.fixture
def make_game():
    return build_game


class ScriptedSource(OddsSource):
    """
    OddsSource that replays a script.

    Each entry is a list of games to return or an exception to raise. The
    last entry repeats once the script runs out.
    """

    def __init__(self, script: list, name: str = "scripted"):
        super().__init__(name=name)
        self.script = list(script)
        self.calls: list[str] = []

    async def fetch_odds(self, sport: str) -> list[Game]:
        self.calls.append(sport)
        index = min(len(self.calls) - 1, len(self.script) - 1)
        step = self.script[index]
        if isinstance(step, Exception):
            self.health.record_failure()
            raise step
        self.health.record_success()
        return step


class RecordingSubscriber(Subscriber):
    """Collects every event pushed to it."""

    def __init__(self, client_id: str = "client_1", fail: bool = False):
        super().__init__(client_id)
        self.events = []
        self.fail = fail

    async def send(self, event) -> None:
        if self.fail:
            raise ConnectionError("client went away")
        self.events.append(event)

    def of_type(self, event_type: str) -> list:
        return [event for event in self.events if event.type.value == event_type]


@pytest.fixture
def scripted_source():
    return ScriptedSource


@pytest.fixture
def recording_subscriber():
    return RecordingSubscriber


@pytest.fixture
def upstream_down():
    return UpstreamUnavailable("provider down", source="scripted")


@pytest.fixture
def fast_settings():
    """Settings with intervals short enough for tests."""
    return Settings(
        scheduler=SchedulerSettings(
            sports=["basketball_nba", "americanfootball_nfl"],
            odds_interval_seconds=0.01,
            provider_timeout_seconds=0.2,
            fetch_timeout_seconds=0.5,
            cache_grace_seconds=0.05,
            fallback_to_synthetic=False,
        ),
        detection=DetectionSettings(),
    )
