"""
The Odds API Feed.

Primary odds provider. Aggregates prices from US sportsbooks per game.

API Docs: https://the-odds-api.com/liveapi/guides/v4/

Endpoint used:
- /sports/{sport}/odds: Odds for upcoming and live events

Every request carries a hard timeout. Failures raise UpstreamUnavailable or
InvalidResponse; the fallback source decides what to serve instead.
"""

import math
import ssl
import time
from datetime import datetime
from typing import Any, Optional

import certifi
import httpx
import structlog

from config.settings import OddsAPISettings
from linewatch.errors import InvalidResponse, UpstreamUnavailable
from linewatch.feeds.base import OddsSource
from linewatch.models.schemas import (
    BookmakerQuote,
    Game,
    Market,
    Price,
    is_valid_american,
)
from linewatch.models.sportsbooks import SportsbookRegistry, registry as default_registry

logger = structlog.get_logger()


# =============================================================================
# Normalization
# =============================================================================

def _as_list(value: Any, field: str) -> list:
    """A nested collection: absent means empty, any other non-array is a bad payload."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidResponse(f"Expected a list for {field!r}, got {type(value).__name__}")
    return value


def _parse_timestamp_ms(value: Any) -> Optional[int]:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return int(parsed.timestamp() * 1000)


def _outcome_side(market: Market, name: str, home_team: str, away_team: str) -> Optional[str]:
    if market is Market.TOTALS:
        lowered = name.lower()
        return lowered if lowered in ("over", "under") else None
    if name == home_team:
        return "home"
    if name == away_team:
        return "away"
    return None


def _parse_market(
    market: Market,
    outcomes: list,
    home_team: str,
    away_team: str,
) -> dict[str, Price]:
    """Valid sides of one market. Invalid or missing prices are dropped, never defaulted."""
    sides: dict[str, Price] = {}
    for outcome in outcomes:
        if not isinstance(outcome, dict):
            continue
        side = _outcome_side(market, str(outcome.get("name", "")), home_team, away_team)
        if side is None or side in sides:
            continue

        price = outcome.get("price")
        if not is_valid_american(price):
            continue

        point = outcome.get("point")
        if market is not Market.MONEYLINE:
            if isinstance(point, bool) or not isinstance(point, (int, float)) or not math.isfinite(point):
                continue
            point = float(point)
        else:
            point = None

        sides[side] = Price(price=int(round(price)), line=point)
    return sides


def normalize_bookmaker(
    data: dict,
    home_team: str,
    away_team: str,
    registry: SportsbookRegistry,
) -> Optional[BookmakerQuote]:
    """Parse one bookmaker block. Books missing from the registry are dropped."""
    key = data.get("key", "")
    book = registry.find(key)
    if book is None:
        logger.debug("Dropping untracked bookmaker", bookmaker=key)
        return None

    markets: dict[Market, dict[str, Price]] = {}
    for market_data in _as_list(data.get("markets"), "markets"):
        if not isinstance(market_data, dict):
            continue
        market = Market.from_string(str(market_data.get("key", "")))
        if market is None:
            continue
        sides = _parse_market(market, _as_list(market_data.get("outcomes"), "outcomes"), home_team, away_team)
        if sides:
            markets[market] = sides

    if not markets:
        return None

    return BookmakerQuote(
        bookmaker=key,
        name=book.name,
        last_update_ms=_parse_timestamp_ms(data.get("last_update")) or int(time.time() * 1000),
        markets=markets,
    )


def normalize_event(
    data: Any,
    sport: str,
    registry: SportsbookRegistry = default_registry,
) -> Optional[Game]:
    """
    Parse one Odds API event into a Game.

    Returns None when the event is missing its identity (teams or start time).

    Raises:
        InvalidResponse: bookmakers, markets or outcomes is not a list
    """
    if not isinstance(data, dict):
        return None

    home_team = data.get("home_team")
    away_team = data.get("away_team")
    commence_ms = _parse_timestamp_ms(data.get("commence_time"))
    if not home_team or not away_team or commence_ms is None:
        return None

    commence_time = datetime.fromisoformat(data["commence_time"].replace("Z", "+00:00"))
    game_id = data.get("id") or f"{home_team}_{away_team}_{data['commence_time']}"

    game = Game(
        game_id=game_id,
        sport=sport,
        home_team=home_team,
        away_team=away_team,
        commence_time=commence_time,
    )

    for book_data in _as_list(data.get("bookmakers"), "bookmakers"):
        if not isinstance(book_data, dict):
            continue
        quote = normalize_bookmaker(book_data, home_team, away_team, registry)
        if quote:
            game.quotes[quote.bookmaker] = quote

    return game


# =============================================================================
# Feed Implementation
# =============================================================================

class OddsAPIFeed(OddsSource):
    """
    Odds feed from The Odds API.

    Usage:
        feed = OddsAPIFeed(settings.odds_api)
        await feed.start()
        games = await feed.fetch_odds("basketball_nba")
    """

    def __init__(
        self,
        config: OddsAPISettings,
        registry: SportsbookRegistry = default_registry,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(name="odds_api")
        self.config = config
        self.registry = registry

        # HTTP client (injected in tests)
        self._http_client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None

        # Rate limiting
        self._request_timestamps: list[float] = []
        self._requests_remaining: Optional[int] = None
        self._requests_used: int = 0
        self._backoff_until: float = 0.0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Create the HTTP client."""
        if self._http_client is None:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            self._http_client = httpx.AsyncClient(
                verify=ssl_context,
                timeout=self.config.timeout_seconds,
                headers={"Accept": "application/json"},
            )
            self._owns_client = True
        self.logger.info("Odds API feed ready", base_url=self.config.base_url)

    async def stop(self) -> None:
        """Close the HTTP client if we created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
        self.health.connected = False

    # =========================================================================
    # Rate Limiting
    # =========================================================================

    def _check_rate_limit(self) -> None:
        """Fail fast while backing off or over the per-minute budget."""
        now = time.time()

        if now < self._backoff_until:
            raise UpstreamUnavailable(
                f"Backing off after rate limit ({self._backoff_until - now:.0f}s left)",
                source=self.name,
            )

        # Clean old timestamps (older than 1 minute)
        self._request_timestamps = [
            ts for ts in self._request_timestamps
            if now - ts < 60
        ]

        if len(self._request_timestamps) >= self.config.requests_per_minute:
            raise UpstreamUnavailable("Per-minute request budget exhausted", source=self.name)

    def _track_usage(self, response: httpx.Response) -> None:
        """Track API quota from response headers."""
        self._request_timestamps.append(time.time())
        if "x-requests-remaining" in response.headers:
            try:
                self._requests_remaining = int(float(response.headers["x-requests-remaining"]))
            except ValueError:
                pass
        if "x-requests-used" in response.headers:
            try:
                self._requests_used = int(float(response.headers["x-requests-used"]))
            except ValueError:
                pass

    # =========================================================================
    # API Calls
    # =========================================================================

    async def _make_request(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """Make an API request. Returns the decoded JSON body."""
        if not self.config.api_key:
            raise UpstreamUnavailable("Odds API key not configured", source=self.name)
        if self._http_client is None:
            await self.start()

        self._check_rate_limit()

        url = f"{self.config.base_url}{endpoint}"
        full_params = {"apiKey": self.config.api_key}
        if params:
            full_params.update(params)

        try:
            response = await self._http_client.get(
                url, params=full_params, timeout=self.config.timeout_seconds
            )
        except httpx.TimeoutException as e:
            self.health.record_failure()
            raise UpstreamUnavailable(f"Request timed out: {e}", source=self.name) from e
        except httpx.HTTPError as e:
            self.health.record_failure()
            raise UpstreamUnavailable(f"Request failed: {e}", source=self.name) from e

        self._track_usage(response)

        if response.status_code == 401:
            self.logger.error("Invalid API key")
            self.health.connected = False
            self.health.record_failure()
            raise UpstreamUnavailable("Invalid API key", source=self.name)

        if response.status_code == 429:
            self._backoff_until = time.time() + self.config.rate_limit_backoff_seconds
            self.logger.warning(
                "Rate limited by API",
                backoff_seconds=self.config.rate_limit_backoff_seconds,
            )
            self.health.record_failure()
            raise UpstreamUnavailable("Rate limited", source=self.name)

        if response.status_code != 200:
            self.logger.warning(
                "API error",
                status=response.status_code,
                body=response.text[:200],
            )
            self.health.record_failure()
            raise UpstreamUnavailable(f"HTTP {response.status_code}", source=self.name)

        try:
            return response.json()
        except ValueError as e:
            self.health.record_failure()
            raise InvalidResponse("Response body is not JSON", source=self.name) from e

    async def fetch_odds(self, sport: str) -> list[Game]:
        """
        Get games with odds for a sport.

        Returns:
            Games in provider order, with only registry bookmakers attached
        """
        params = {
            "regions": ",".join(self.config.regions),
            "markets": ",".join(self.config.markets),
            "oddsFormat": "american",
            "dateFormat": "iso",
        }
        data = await self._make_request(f"/sports/{sport}/odds", params)

        if not isinstance(data, list):
            self.health.record_failure()
            raise InvalidResponse(
                f"Expected a list of events, got {type(data).__name__}",
                source=self.name,
            )

        games = []
        skipped = 0
        for event_data in data:
            try:
                game = normalize_event(event_data, sport, self.registry)
            except (InvalidResponse, TypeError, ValueError, OverflowError) as e:
                self.health.record_failure()
                raise InvalidResponse(f"Malformed event payload: {e}", source=self.name) from e
            if game is None:
                skipped += 1
                continue
            games.append(game)

        self.health.record_success()
        self.logger.info(
            "Fetched events",
            sport=sport,
            count=len(games),
            skipped=skipped,
            requests_remaining=self._requests_remaining,
        )
        return games

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_metrics(self) -> dict:
        """Get feed health metrics."""
        metrics = super().get_metrics()
        metrics.update({
            "requests_remaining": self._requests_remaining,
            "requests_used": self._requests_used,
            "backing_off": time.time() < self._backoff_until,
        })
        return metrics
