"""
Synthetic odds source.

Generates plausible demo games so subscribers keep receiving data when the
live provider is down or no API key is configured. Seed it for
reproducible output in tests.
"""

import random
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from linewatch.feeds.base import OddsSource
from linewatch.models.schemas import BookmakerQuote, Game, Market, Price
from linewatch.models.sportsbooks import SportsbookRegistry, registry as default_registry

DEMO_TEAMS: dict[str, list[str]] = {
    "basketball_nba": [
        "Los Angeles Lakers", "Boston Celtics",
        "Golden State Warriors", "Milwaukee Bucks",
        "Phoenix Suns", "Miami Heat",
        "Denver Nuggets", "Philadelphia 76ers",
        "Brooklyn Nets", "Dallas Mavericks",
    ],
    "americanfootball_nfl": [
        "Kansas City Chiefs", "Buffalo Bills",
        "San Francisco 49ers", "Philadelphia Eagles",
        "Dallas Cowboys", "Miami Dolphins",
        "Baltimore Ravens", "Cincinnati Bengals",
        "Detroit Lions", "Green Bay Packers",
    ],
    "baseball_mlb": [
        "Los Angeles Dodgers", "New York Yankees",
        "Houston Astros", "Atlanta Braves",
        "San Diego Padres", "Philadelphia Phillies",
        "Toronto Blue Jays", "Seattle Mariners",
        "Tampa Bay Rays", "St. Louis Cardinals",
    ],
    "icehockey_nhl": [
        "Colorado Avalanche", "Tampa Bay Lightning",
        "Edmonton Oilers", "Carolina Hurricanes",
        "Boston Bruins", "Vegas Golden Knights",
        "Toronto Maple Leafs", "New York Rangers",
        "Florida Panthers", "Dallas Stars",
    ],
}

# Typical full-game totals per sport
DEMO_TOTALS: dict[str, tuple[float, float]] = {
    "basketball_nba": (200.0, 250.0),
    "americanfootball_nfl": (38.0, 54.0),
    "baseball_mlb": (7.0, 10.5),
    "icehockey_nhl": (5.0, 7.0),
}


def _clamp_american(value: float) -> int:
    """Round to an integer American price outside the (-100, +100) gap."""
    price = int(round(value))
    if -100 < price < 100:
        price = 100 if value >= 0 else -100
    return price


class SyntheticOddsFeed(OddsSource):
    """Demo data generator implementing the OddsSource contract."""

    def __init__(
        self,
        registry: SportsbookRegistry = default_registry,
        seed: Optional[int] = None,
        games_per_sport: int = 5,
        min_books: int = 10,
        max_books: int = 20,
    ):
        super().__init__(name="synthetic")
        self.registry = registry
        self.games_per_sport = games_per_sport
        self.min_books = min_books
        self.max_books = max_books
        self._rng = random.Random(seed)

    async def fetch_odds(self, sport: str) -> list[Game]:
        games = self.generate_games(sport)
        self.health.record_success()
        self.logger.info("Generated demo games", sport=sport, count=len(games))
        return games

    def generate_games(self, sport: str, now: Optional[datetime] = None) -> list[Game]:
        """Games two hours apart starting now."""
        now = now or datetime.now(timezone.utc)
        return [
            self._generate_game(sport, now + timedelta(hours=2 * index), index)
            for index in range(self.games_per_sport)
        ]

    def _generate_game(self, sport: str, commence_time: datetime, index: int) -> Game:
        teams = DEMO_TEAMS.get(sport, DEMO_TEAMS["basketball_nba"])
        home_team = teams[(index * 2) % len(teams)]
        away_team = teams[(index * 2 + 1) % len(teams)]

        # Game-level "true" line; books scatter around it
        favoured_by = self._rng.uniform(-5, 5)
        low, high = DEMO_TOTALS.get(sport, DEMO_TOTALS["basketball_nba"])
        total = round(self._rng.uniform(low, high) * 2) / 2

        game = Game(
            game_id=f"demo_{sport}_{index}",
            sport=sport,
            home_team=home_team,
            away_team=away_team,
            commence_time=commence_time,
        )
        now_ms = int(time.time() * 1000)
        for key in self._pick_books():
            book = self.registry.get(key)
            game.quotes[key] = BookmakerQuote(
                bookmaker=key,
                name=book.name,
                last_update_ms=now_ms,
                markets=self._random_markets(favoured_by, total),
            )
        return game

    def _pick_books(self) -> list[str]:
        keys = self.registry.keys()
        upper = min(self.max_books, len(keys))
        lower = min(self.min_books, upper)
        return self._rng.sample(keys, self._rng.randint(lower, upper))

    def _random_markets(self, favoured_by: float, total: float) -> dict[Market, dict[str, Price]]:
        # Books shade the line by up to a point
        spread_line = round((favoured_by + self._rng.uniform(-1, 1)) * 2) / 2
        total_line = total + self._rng.choice((-1.0, -0.5, 0.0, 0.0, 0.5, 1.0))
        return {
            Market.MONEYLINE: {
                "home": Price(self._moneyline(favoured_by)),
                "away": Price(self._moneyline(-favoured_by)),
            },
            Market.SPREAD: {
                "home": Price(self._juice(), line=-spread_line),
                "away": Price(self._juice(), line=spread_line),
            },
            Market.TOTALS: {
                "over": Price(self._juice(), line=total_line),
                "under": Price(self._juice(), line=total_line),
            },
        }

    def _moneyline(self, margin: float) -> int:
        """Favourite (positive margin) gets a negative price, underdog positive."""
        noise = self._rng.uniform(-10, 10)
        if margin > 0:
            return _clamp_american(-110 - abs(margin) * 20 + noise)
        return _clamp_american(110 + abs(margin) * 20 + noise)

    def _juice(self) -> int:
        return _clamp_american(-110 + self._rng.uniform(-10, 10))
