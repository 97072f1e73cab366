"""
Wire messages for the live odds transport.

Client -> server: JSON objects with an `action` field, validated with
pydantic (camelCase keys on the wire).
Server -> client: ServerEvent, serialized with orjson.

Snapshot and movement payloads are rendered per subscriber, applying that
subscriber's filters.
"""

import time
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from linewatch.models.schemas import (
    Game,
    Market,
    Movement,
    QuoteMovement,
)
from linewatch.models.sportsbooks import registry


def _now_ms() -> int:
    return int(time.time() * 1000)


def _parse_market(value: Any) -> Any:
    if isinstance(value, str):
        market = Market.from_string(value)
        if market is None:
            raise ValueError(f"Unknown market type: {value}")
        return market
    return value


def _parse_bookmaker(value: Any) -> Any:
    if isinstance(value, str):
        key = value.strip().lower()
        if key not in registry:
            raise ValueError(f"Unknown bookmaker: {value}")
        return key
    return value


# =============================================================================
# Client messages
# =============================================================================

class SubscriptionFilters(BaseModel):
    """Per-subscriber view of a sport's snapshot."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    min_sportsbooks: int = Field(default=0, ge=0, alias="minSportsbooks")
    market_types: tuple[Market, ...] = Field(default=tuple(Market), alias="marketTypes")
    only_best_odds: bool = Field(default=False, alias="onlyBestOdds")
    show_arbitrage: bool = Field(default=True, alias="showArbitrage")
    # Empty means every bookmaker
    bookmakers: tuple[str, ...] = ()

    @field_validator("market_types", mode="before")
    @classmethod
    def _parse_market_types(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return tuple(_parse_market(item) for item in value)
        return value

    @field_validator("bookmakers", mode="before")
    @classmethod
    def _parse_bookmakers(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return tuple(_parse_bookmaker(item) for item in value)
        return value

    @property
    def markets(self) -> set[Market]:
        return set(self.market_types)

    def accepts_game(self, game: Game) -> bool:
        return game.bookmaker_count >= self.min_sportsbooks

    def accepts_bookmaker(self, key: str) -> bool:
        return not self.bookmakers or key in self.bookmakers


class _ClientMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SubscribeMessage(_ClientMessage):
    action: Literal["subscribe"]
    sports: list[str] = Field(min_length=1)
    filters: SubscriptionFilters = Field(default_factory=SubscriptionFilters)
    alert_on_movement: bool = Field(default=True, alias="alertOnMovement")


class UnsubscribeMessage(_ClientMessage):
    action: Literal["unsubscribe"]
    sports: list[str] = Field(min_length=1)


class GetLiveOddsMessage(_ClientMessage):
    action: Literal["get_live_odds"]
    sport: str
    game_id: Optional[str] = Field(default=None, alias="gameId")


class GetBestOddsMessage(_ClientMessage):
    action: Literal["get_best_odds"]
    sport: str
    game_id: str = Field(alias="gameId")


class GetLineMovementMessage(_ClientMessage):
    action: Literal["get_line_movement"]
    sport: str
    game_id: str = Field(alias="gameId")
    market: Market = Market.MONEYLINE
    bookmaker: Optional[str] = None

    @field_validator("market", mode="before")
    @classmethod
    def _parse_market_field(cls, value: Any) -> Any:
        return _parse_market(value)

    @field_validator("bookmaker", mode="before")
    @classmethod
    def _parse_bookmaker_field(cls, value: Any) -> Any:
        return _parse_bookmaker(value)


class TrackGameMessage(_ClientMessage):
    action: Literal["track_game"]
    sport: str
    game_id: str = Field(alias="gameId")


class PingMessage(_ClientMessage):
    action: Literal["ping"]


class InvalidateCacheMessage(_ClientMessage):
    action: Literal["invalidate_cache"]
    token: str = ""


ClientMessage = Annotated[
    Union[
        SubscribeMessage,
        UnsubscribeMessage,
        GetLiveOddsMessage,
        GetBestOddsMessage,
        GetLineMovementMessage,
        TrackGameMessage,
        PingMessage,
        InvalidateCacheMessage,
    ],
    Field(discriminator="action"),
]

_client_message_adapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: Union[str, bytes]) -> ClientMessage:
    """
    Decode and validate one client message.

    Raises:
        ValueError: not JSON, unknown action or invalid fields
            (orjson.JSONDecodeError and pydantic.ValidationError both
            subclass ValueError)
    """
    data = orjson.loads(raw)
    return _client_message_adapter.validate_python(data)


# =============================================================================
# Server events
# =============================================================================

class EventType(str, Enum):
    CONNECTED = "connected"
    SNAPSHOT = "snapshot"
    MOVEMENT = "movement"
    ALERT = "alert"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    LIVE_ODDS = "live_odds"
    BEST_ODDS = "best_odds"
    LINE_MOVEMENT = "line_movement"
    TRACKING_CONFIRMED = "tracking_confirmed"
    GAME_UPDATE = "game_update"
    PONG = "pong"
    CACHE_INVALIDATED = "cache_invalidated"
    ERROR = "error"


class EventPriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"


class AlertKind(str, Enum):
    STEAM_MOVE = "steam_move"
    TRACKED_STEAM = "tracked_steam"
    ARBITRAGE = "arbitrage"
    MIDDLE = "middle"


class ErrorCode(str, Enum):
    UNKNOWN_SPORT = "unknown_sport"
    INVALID_MESSAGE = "invalid_message"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"


class ServerEvent(BaseModel):
    """One push to a client."""
    model_config = ConfigDict(frozen=True)

    type: EventType
    sport: Optional[str] = None
    priority: EventPriority = EventPriority.NORMAL
    data: Any = None
    timestamp_ms: int = Field(default_factory=_now_ms)

    def to_json(self) -> bytes:
        payload = self.model_dump(mode="json")
        return orjson.dumps({key: value for key, value in payload.items() if value is not None})


def error_event(code: ErrorCode, message: str, sport: Optional[str] = None) -> ServerEvent:
    return ServerEvent(
        type=EventType.ERROR,
        sport=sport,
        data={"code": code.value, "message": message},
    )


# =============================================================================
# Per-subscriber rendering
# =============================================================================

def _render_game(game: Game, filters: SubscriptionFilters, best_odds) -> dict:
    markets = filters.markets
    data = game.to_dict(include_quotes=False)
    data["best_odds"] = best_odds.to_dict(markets=markets) if best_odds else None

    if not filters.only_best_odds:
        quotes = {}
        for key, quote in game.quotes.items():
            if not filters.accepts_bookmaker(key):
                continue
            quote_data = quote.to_dict()
            quote_data["markets"] = {
                market: sides
                for market, sides in quote_data["markets"].items()
                if Market(market) in markets
            }
            quotes[key] = quote_data
        data["quotes"] = quotes
    return data


def render_snapshot(snapshot, filters: SubscriptionFilters) -> dict:
    """Snapshot payload as one subscriber sees it."""
    games = [game for game in snapshot.games if filters.accepts_game(game)]
    data = {
        "source": snapshot.source,
        "updated_at_ms": snapshot.updated_at_ms,
        "games": [
            _render_game(game, filters, snapshot.best_odds.get(game.game_id))
            for game in games
        ],
    }
    if filters.show_arbitrage:
        visible = {game.game_id for game in games}
        data["opportunities"] = [
            opp.to_dict()
            for opp in snapshot.opportunities
            if opp.game_id in visible and opp.market in filters.markets
        ]
    return data


def render_movement(
    snapshot,
    quote_movements: list[QuoteMovement],
    movements: list[Movement],
    filters: SubscriptionFilters,
) -> Optional[dict]:
    """Movement delta for one subscriber, or None when nothing they see moved."""
    visible = {game.game_id for game in snapshot.games if filters.accepts_game(game)}
    markets = filters.markets

    quotes = [
        qm.to_dict() for qm in quote_movements
        if qm.game_id in visible and qm.market in markets and filters.accepts_bookmaker(qm.bookmaker)
    ]
    tracked = [
        m.to_dict() for m in movements
        if m.game_id in visible and m.market in markets
    ]
    if not quotes and not tracked:
        return None
    return {"quote_movements": quotes, "movements": tracked}


def render_game_update(
    snapshot,
    game_id: str,
    movements: list[Movement],
    filters: SubscriptionFilters,
) -> Optional[dict]:
    """One tracked game, or None when it is not in the snapshot."""
    game = snapshot.get_game(game_id)
    if game is None:
        return None

    markets = filters.markets
    data = {
        "game": _render_game(game, filters, snapshot.best_odds.get(game_id)),
        "movements": [
            m.to_dict() for m in movements
            if m.game_id == game_id and m.market in markets
        ],
        "updated_at_ms": snapshot.updated_at_ms,
    }
    if filters.show_arbitrage:
        data["opportunities"] = [
            opp.to_dict() for opp in snapshot.opportunities_for(game_id)
            if opp.market in markets
        ]
    return data
