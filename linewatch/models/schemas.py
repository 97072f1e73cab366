"""
Odds data models and schemas.

Defines the core data structures for:
- Sports, markets and game status
- Per-bookmaker quotes and American odds conversions
- Best-price / consensus views
- Arbitrage and middle opportunities
- Line movement history
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union


class Sport(Enum):
    """Sports with known demo data and Odds API keys."""
    NFL = "americanfootball_nfl"
    NCAAF = "americanfootball_ncaaf"
    NBA = "basketball_nba"
    NCAAB = "basketball_ncaab"
    MLB = "baseball_mlb"
    NHL = "icehockey_nhl"
    EPL = "soccer_epl"
    MLS = "soccer_usa_mls"
    UFC = "mma_mixed_martial_arts"

    @classmethod
    def from_string(cls, value: str) -> Optional["Sport"]:
        """Convert string to Sport enum."""
        value_lower = value.lower()
        for sport in cls:
            if sport.value.lower() == value_lower or sport.name.lower() == value_lower:
                return sport
        return None


class Market(str, Enum):
    """Betting markets tracked per bookmaker."""
    MONEYLINE = "moneyline"
    SPREAD = "spread"
    TOTALS = "totals"

    @property
    def sides(self) -> tuple[str, str]:
        if self is Market.TOTALS:
            return ("over", "under")
        return ("home", "away")

    @property
    def api_key(self) -> str:
        """Market key used by The Odds API."""
        return _API_KEYS[self]

    @classmethod
    def from_string(cls, value: str) -> Optional["Market"]:
        """Accepts our names and Odds API names (h2h, spreads)."""
        return _MARKET_ALIASES.get(value.lower().strip())


_API_KEYS = {
    Market.MONEYLINE: "h2h",
    Market.SPREAD: "spreads",
    Market.TOTALS: "totals",
}

_MARKET_ALIASES = {
    "moneyline": Market.MONEYLINE,
    "h2h": Market.MONEYLINE,
    "spread": Market.SPREAD,
    "spreads": Market.SPREAD,
    "totals": Market.TOTALS,
    "total": Market.TOTALS,
}


class GameStatus(str, Enum):
    SCHEDULED = "scheduled"
    UPCOMING = "upcoming"
    LIVE = "live"
    FINAL = "final"


class OddsFormat(Enum):
    """Odds format types."""
    AMERICAN = "american"      # +150, -200
    DECIMAL = "decimal"        # 2.50, 1.50
    IMPLIED = "implied"        # 40.0%


# =============================================================================
# Odds conversions
# =============================================================================

def is_valid_american(price) -> bool:
    """American odds are never inside (-100, +100); 0 is never a price."""
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        return False
    return math.isfinite(price) and abs(price) >= 100


def american_to_decimal(american: float) -> float:
    """Convert American odds to Decimal."""
    if american > 0:
        return (american / 100) + 1
    return (100 / abs(american)) + 1


def american_to_implied(american: float) -> float:
    """Convert American odds to implied probability (0-1)."""
    if american > 0:
        return 100 / (american + 100)
    return abs(american) / (abs(american) + 100)


def format_odds(american: Optional[float], fmt: OddsFormat = OddsFormat.AMERICAN) -> str:
    """Human-readable price in the requested format."""
    if not american:
        return "N/A"
    if fmt is OddsFormat.DECIMAL:
        return f"{american_to_decimal(american):.2f}"
    if fmt is OddsFormat.IMPLIED:
        return f"{american_to_implied(american) * 100:.1f}%"
    return f"+{american:g}" if american > 0 else f"{american:g}"


# =============================================================================
# Quotes and games
# =============================================================================

@dataclass(frozen=True)
class Price:
    """A single outcome price. `line` is the point value for spreads/totals."""
    price: int
    line: Optional[float] = None

    @property
    def implied_prob(self) -> float:
        return american_to_implied(self.price)

    def to_dict(self) -> dict:
        return {"price": self.price, "line": self.line}


@dataclass
class BookmakerQuote:
    """
    One bookmaker's current prices for a game.

    Replaced wholesale on each ingestion cycle. Markets the book does not
    offer are absent from `markets`, never filled with placeholders.
    """
    bookmaker: str
    name: str
    last_update_ms: int
    markets: dict[Market, dict[str, Price]] = field(default_factory=dict)

    def get_price(self, market: Market, side: str) -> Optional[Price]:
        return self.markets.get(market, {}).get(side)

    def to_dict(self) -> dict:
        return {
            "bookmaker": self.bookmaker,
            "name": self.name,
            "last_update_ms": self.last_update_ms,
            "markets": {
                market.value: {side: price.to_dict() for side, price in sides.items()}
                for market, sides in self.markets.items()
            },
        }


@dataclass
class Game:
    """A single sporting event with quotes keyed by bookmaker."""
    game_id: str
    sport: str
    home_team: str
    away_team: str
    commence_time: datetime
    quotes: dict[str, BookmakerQuote] = field(default_factory=dict)

    def status(self, now: Optional[datetime] = None) -> GameStatus:
        """Derived from start time: final after 3h, live once started, upcoming within 24h."""
        now = now or datetime.now(timezone.utc)
        commence = self.commence_time
        if commence.tzinfo is None:
            commence = commence.replace(tzinfo=timezone.utc)
        seconds_to_start = (commence - now).total_seconds()

        if seconds_to_start < -3 * 3600:
            return GameStatus.FINAL
        if seconds_to_start < 0:
            return GameStatus.LIVE
        if seconds_to_start < 24 * 3600:
            return GameStatus.UPCOMING
        return GameStatus.SCHEDULED

    @property
    def bookmaker_count(self) -> int:
        return len(self.quotes)

    def get_display_name(self) -> str:
        """Get human-readable event name."""
        return f"{self.away_team} @ {self.home_team}"

    def to_dict(self, include_quotes: bool = True) -> dict:
        data = {
            "game_id": self.game_id,
            "sport": self.sport,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "commence_time": self.commence_time.isoformat(),
            "status": self.status().value,
            "bookmaker_count": self.bookmaker_count,
        }
        if include_quotes:
            data["quotes"] = {key: quote.to_dict() for key, quote in self.quotes.items()}
        return data


# =============================================================================
# Best odds / consensus
# =============================================================================

@dataclass(frozen=True)
class BestPrice:
    """Highest price for one side, attributed to the book offering it."""
    price: int
    bookmaker: str
    bookmaker_name: str
    line: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "price": self.price,
            "bookmaker": self.bookmaker,
            "bookmaker_name": self.bookmaker_name,
            "line": self.line,
        }


@dataclass(frozen=True)
class SideConsensus:
    """Spread of prices across books for one side. Low std_dev = market agreement."""
    mean: float
    std_dev: float
    books_count: int
    is_consensus: bool

    def to_dict(self) -> dict:
        return {
            "mean": round(self.mean, 2),
            "std_dev": round(self.std_dev, 2),
            "books_count": self.books_count,
            "is_consensus": self.is_consensus,
        }


def _empty_sides() -> dict:
    return {market: {side: None for side in market.sides} for market in Market}


@dataclass
class BestOdds:
    """Best price and consensus per market/side, derived fresh each cycle."""
    prices: dict[Market, dict[str, Optional[BestPrice]]] = field(default_factory=_empty_sides)
    consensus: dict[Market, dict[str, Optional[SideConsensus]]] = field(default_factory=_empty_sides)
    bookmaker_count: int = 0

    def get(self, market: Market, side: str) -> Optional[BestPrice]:
        return self.prices.get(market, {}).get(side)

    def get_consensus(self, market: Market, side: str) -> Optional[SideConsensus]:
        return self.consensus.get(market, {}).get(side)

    def bookmakers(self) -> set[str]:
        """Every bookmaker referenced by a best price."""
        return {
            best.bookmaker
            for sides in self.prices.values()
            for best in sides.values()
            if best is not None
        }

    def to_dict(self, markets: Optional[set[Market]] = None) -> dict:
        return {
            "bookmaker_count": self.bookmaker_count,
            "markets": {
                market.value: {
                    side: {
                        "best": best.to_dict() if best else None,
                        "consensus": (
                            self.consensus[market][side].to_dict()
                            if self.consensus[market][side] else None
                        ),
                    }
                    for side, best in sides.items()
                }
                for market, sides in self.prices.items()
                if markets is None or market in markets
            },
        }


# =============================================================================
# Opportunities
# =============================================================================

class OpportunityKind(str, Enum):
    ARBITRAGE = "arbitrage"
    SPREAD_MIDDLE = "spread_middle"
    TOTAL_MIDDLE = "total_middle"


@dataclass(frozen=True)
class ArbitrageLeg:
    side: str
    price: int
    bookmaker: str
    bookmaker_name: str
    implied_prob: float
    stake_fraction: float
    line: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "side": self.side,
            "price": self.price,
            "bookmaker": self.bookmaker,
            "bookmaker_name": self.bookmaker_name,
            "implied_prob": round(self.implied_prob, 6),
            "stake_fraction": round(self.stake_fraction, 6),
            "line": self.line,
        }


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """
    Best-priced outcomes whose implied probabilities sum below 100%.

    Staking each leg at `stake_fraction` of the total returns the same
    payout whichever outcome wins.
    """
    game_id: str
    market: Market
    legs: tuple[ArbitrageLeg, ...]
    implied_sum: float
    profit_margin: float  # percent
    kind: OpportunityKind = OpportunityKind.ARBITRAGE

    def stakes(self, total: float) -> tuple[dict[str, float], float]:
        """Stake per side for a total outlay, and the guaranteed payout."""
        stakes = {leg.side: total * leg.stake_fraction for leg in self.legs}
        payout = total / self.implied_sum
        return stakes, payout

    @property
    def instructions(self) -> str:
        return ", ".join(
            f"Bet {leg.stake_fraction:.1%} on {leg.side} at {leg.bookmaker_name}"
            for leg in self.legs
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "game_id": self.game_id,
            "market": self.market.value,
            "implied_sum": round(self.implied_sum, 6),
            "profit_margin": round(self.profit_margin, 4),
            "legs": [leg.to_dict() for leg in self.legs],
            "instructions": self.instructions,
        }


@dataclass(frozen=True)
class MiddleOpportunity:
    """Two books posting lines far enough apart that both bets can win."""
    kind: OpportunityKind
    game_id: str
    market: Market
    bookmaker_a: str
    bookmaker_b: str
    line_a: float
    line_b: float
    gap: float

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "game_id": self.game_id,
            "market": self.market.value,
            "bookmaker_a": self.bookmaker_a,
            "bookmaker_b": self.bookmaker_b,
            "line_a": self.line_a,
            "line_b": self.line_b,
            "gap": self.gap,
        }


Opportunity = Union[ArbitrageOpportunity, MiddleOpportunity]


# =============================================================================
# Line movement
# =============================================================================

class MovementDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"

    @classmethod
    def from_change(cls, change: float) -> "MovementDirection":
        if change > 0:
            return cls.UP
        if change < 0:
            return cls.DOWN
        return cls.STABLE


@dataclass(frozen=True)
class OddsSnapshot:
    """One timestamped BestOdds entry in a game's movement record."""
    timestamp_ms: int
    best_odds: BestOdds
    bookmaker_count: int
    # Per-bookmaker quotes as seen in that cycle
    quotes: dict[str, BookmakerQuote] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp_ms": self.timestamp_ms,
            "bookmaker_count": self.bookmaker_count,
            "best_odds": self.best_odds.to_dict(),
        }


@dataclass(frozen=True)
class SideMovement:
    from_price: int
    to_price: int
    change: int
    direction: MovementDirection
    is_steam: bool

    @property
    def magnitude(self) -> int:
        return abs(self.change)

    def to_dict(self) -> dict:
        return {
            "from": self.from_price,
            "to": self.to_price,
            "change": self.change,
            "direction": self.direction.value,
            "magnitude": self.magnitude,
            "is_steam": self.is_steam,
        }


@dataclass(frozen=True)
class Movement:
    """Movement between the earliest and latest retained snapshot of a game."""
    game_id: str
    market: Market
    timespan_ms: int
    sides: dict[str, Optional[SideMovement]]

    @property
    def is_steam(self) -> bool:
        return any(side is not None and side.is_steam for side in self.sides.values())

    def to_dict(self) -> dict:
        return {
            "game_id": self.game_id,
            "market": self.market.value,
            "timespan_ms": self.timespan_ms,
            "is_steam": self.is_steam,
            "sides": {
                side: movement.to_dict() if movement else None
                for side, movement in self.sides.items()
            },
        }


@dataclass(frozen=True)
class QuoteMovement:
    """One bookmaker's change on one outcome between consecutive cycles."""
    game_id: str
    home_team: str
    away_team: str
    bookmaker: str
    market: Market
    side: str
    previous_price: int
    current_price: int
    previous_line: Optional[float]
    current_line: Optional[float]
    is_steam: bool
    timestamp_ms: int

    @property
    def price_diff(self) -> int:
        return self.current_price - self.previous_price

    @property
    def line_diff(self) -> float:
        return (self.current_line or 0.0) - (self.previous_line or 0.0)

    @property
    def magnitude(self) -> int:
        return abs(self.price_diff)

    @property
    def direction(self) -> MovementDirection:
        return MovementDirection.from_change(self.price_diff)

    def to_dict(self) -> dict:
        return {
            "game_id": self.game_id,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "bookmaker": self.bookmaker,
            "market": self.market.value,
            "side": self.side,
            "previous_price": self.previous_price,
            "current_price": self.current_price,
            "price_diff": self.price_diff,
            "previous_line": self.previous_line,
            "current_line": self.current_line,
            "line_diff": self.line_diff,
            "direction": self.direction.value,
            "magnitude": self.magnitude,
            "is_steam": self.is_steam,
            "timestamp_ms": self.timestamp_ms,
        }
