"""
Line movement tracking.

Two views of movement:
- LineMovementTracker keeps a bounded, oldest-first history of BestOdds
  snapshots per game and measures movement between the earliest and latest
  retained snapshot ("since we started watching"). Each snapshot also keeps
  the per-bookmaker quotes, so one book's history can be replayed.
- diff_quotes compares two consecutive cycles bookmaker by bookmaker and
  reports individual price/line changes.

Moves of `steam_threshold` American-odds points or more are steam moves.
"""

import time
from collections import deque
from typing import Iterable, Optional

import structlog

from linewatch.models.schemas import (
    BestOdds,
    BookmakerQuote,
    Game,
    Market,
    Movement,
    MovementDirection,
    OddsSnapshot,
    QuoteMovement,
    SideMovement,
)

logger = structlog.get_logger()

DEFAULT_HISTORY_SIZE = 100
DEFAULT_STEAM_THRESHOLD = 20


class LineMovementTracker:
    """Ring buffer of best-odds snapshots per game."""

    def __init__(
        self,
        max_history: int = DEFAULT_HISTORY_SIZE,
        steam_threshold: int = DEFAULT_STEAM_THRESHOLD,
    ):
        if max_history < 2:
            raise ValueError("max_history must keep at least 2 snapshots")
        self.max_history = max_history
        self.steam_threshold = steam_threshold
        self.logger = logger.bind(component="movement_tracker")

        self._records: dict[str, deque[OddsSnapshot]] = {}
        # Latest Game per record (sport and team names)
        self._games: dict[str, Game] = {}

    # =========================================================================
    # Recording
    # =========================================================================

    def record(
        self,
        game: Game,
        best_odds: BestOdds,
        timestamp_ms: Optional[int] = None,
    ) -> OddsSnapshot:
        """Append a snapshot, evicting the oldest when at capacity."""
        snapshot = OddsSnapshot(
            timestamp_ms=timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
            best_odds=best_odds,
            bookmaker_count=game.bookmaker_count,
            quotes=dict(game.quotes),
        )
        record = self._records.get(game.game_id)
        if record is None:
            record = deque(maxlen=self.max_history)
            self._records[game.game_id] = record
        self._games[game.game_id] = game
        record.append(snapshot)
        return snapshot

    def history(self, game_id: str, limit: Optional[int] = None) -> list[OddsSnapshot]:
        """Snapshots oldest first; `limit` keeps only the most recent ones."""
        snapshots = list(self._records.get(game_id, ()))
        if limit is not None:
            snapshots = snapshots[-limit:] if limit > 0 else []
        return snapshots

    # =========================================================================
    # Movement
    # =========================================================================

    def _side_movement(
        self,
        earliest: OddsSnapshot,
        latest: OddsSnapshot,
        market: Market,
        side: str,
    ) -> Optional[SideMovement]:
        early = earliest.best_odds.get(market, side)
        late = latest.best_odds.get(market, side)
        if early is None or late is None:
            return None

        change = late.price - early.price
        return SideMovement(
            from_price=early.price,
            to_price=late.price,
            change=change,
            direction=MovementDirection.from_change(change),
            is_steam=abs(change) >= self.steam_threshold,
        )

    def get_movement(self, game_id: str, market: Market) -> Optional[Movement]:
        """
        Movement between the earliest and latest retained snapshot.

        Returns None when fewer than 2 snapshots exist.
        """
        record = self._records.get(game_id)
        if not record or len(record) < 2:
            return None

        earliest, latest = record[0], record[-1]
        return Movement(
            game_id=game_id,
            market=market,
            timespan_ms=latest.timestamp_ms - earliest.timestamp_ms,
            sides={
                side: self._side_movement(earliest, latest, market, side)
                for side in market.sides
            },
        )

    def get_movements(self, game_id: str) -> list[Movement]:
        """Movement for every market of a game (empty if unavailable)."""
        movements = []
        for market in Market:
            movement = self.get_movement(game_id, market)
            if movement is not None:
                movements.append(movement)
        return movements

    def bookmaker_movements(
        self,
        game_id: str,
        market: Optional[Market] = None,
        bookmaker: Optional[str] = None,
        price_threshold: int = 5,
        line_threshold: float = 0.5,
    ) -> list[QuoteMovement]:
        """
        Quote changes between every pair of consecutive retained snapshots.

        Args:
            market: only this market (all markets if None)
            bookmaker: only this bookmaker key (all books if None)

        Returns:
            Movements oldest first, stamped with the later snapshot's time
        """
        record = self._records.get(game_id)
        game = self._games.get(game_id)
        if not record or game is None:
            return []

        markets = {market} if market is not None else None
        snapshots = list(record)
        movements: list[QuoteMovement] = []
        for before, after in zip(snapshots, snapshots[1:]):
            for book_key, quote in after.quotes.items():
                if bookmaker is not None and book_key != bookmaker:
                    continue
                previous_quote = before.quotes.get(book_key)
                if previous_quote is None:
                    continue
                movements.extend(_quote_changes(
                    game, book_key, previous_quote, quote,
                    price_threshold, line_threshold, self.steam_threshold,
                    after.timestamp_ms, markets,
                ))
        return movements

    # =========================================================================
    # Eviction
    # =========================================================================

    def evict(self, game_id: str) -> None:
        self._records.pop(game_id, None)
        self._games.pop(game_id, None)

    def evict_sport(self, sport: str) -> int:
        """Drop every game of a sport. Returns the number evicted."""
        game_ids = [gid for gid, game in self._games.items() if game.sport == sport]
        for game_id in game_ids:
            self.evict(game_id)
        return len(game_ids)

    def retain(self, sport: str, game_ids: Iterable[str]) -> int:
        """Drop games of `sport` that are no longer in the feed."""
        keep = set(game_ids)
        stale = [
            gid for gid, game in self._games.items()
            if game.sport == sport and gid not in keep
        ]
        for game_id in stale:
            self.evict(game_id)
        if stale:
            self.logger.debug("Evicted finished games", sport=sport, count=len(stale))
        return len(stale)

    def clear(self) -> None:
        self._records.clear()
        self._games.clear()

    def __contains__(self, game_id: object) -> bool:
        return game_id in self._records

    def __len__(self) -> int:
        return len(self._records)


def _quote_changes(
    game: Game,
    book_key: str,
    before_quote: BookmakerQuote,
    after_quote: BookmakerQuote,
    price_threshold: int,
    line_threshold: float,
    steam_threshold: int,
    timestamp_ms: int,
    markets: Optional[set[Market]] = None,
) -> list[QuoteMovement]:
    """Outcomes of one book that moved by a threshold or more."""
    movements = []
    for market, sides in after_quote.markets.items():
        if markets is not None and market not in markets:
            continue
        for side, price in sides.items():
            before = before_quote.get_price(market, side)
            if before is None:
                continue

            price_diff = price.price - before.price
            line_diff = (price.line or 0.0) - (before.line or 0.0)
            if abs(price_diff) < price_threshold and abs(line_diff) < line_threshold:
                continue

            movements.append(QuoteMovement(
                game_id=game.game_id,
                home_team=game.home_team,
                away_team=game.away_team,
                bookmaker=book_key,
                market=market,
                side=side,
                previous_price=before.price,
                current_price=price.price,
                previous_line=before.line,
                current_line=price.line,
                is_steam=abs(price_diff) >= steam_threshold,
                timestamp_ms=timestamp_ms,
            ))
    return movements


def diff_quotes(
    previous_games: Iterable[Game],
    current_games: Iterable[Game],
    price_threshold: int = 5,
    line_threshold: float = 0.5,
    steam_threshold: int = DEFAULT_STEAM_THRESHOLD,
    timestamp_ms: Optional[int] = None,
) -> list[QuoteMovement]:
    """
    Per-bookmaker changes between two consecutive cycles.

    Only outcomes quoted by the same book in both cycles are compared.
    """
    now_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    previous_by_id = {game.game_id: game for game in previous_games}
    movements: list[QuoteMovement] = []

    for game in current_games:
        previous_game = previous_by_id.get(game.game_id)
        if previous_game is None:
            continue

        for book_key, quote in game.quotes.items():
            previous_quote = previous_game.quotes.get(book_key)
            if previous_quote is None:
                continue
            movements.extend(_quote_changes(
                game, book_key, previous_quote, quote,
                price_threshold, line_threshold, steam_threshold, now_ms,
            ))

    return movements
