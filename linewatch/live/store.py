"""
In-memory snapshot store.

One SportSnapshot per sport, replaced wholesale after a complete cycle.
Readers never observe a half-written cycle: they hold either the previous
snapshot or the new one.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from linewatch.models.schemas import BestOdds, Game, Opportunity

logger = structlog.get_logger()


@dataclass(frozen=True)
class SportSnapshot:
    """Everything computed for one sport in one cycle. Not mutated after publish."""
    sport: str
    games: tuple[Game, ...]
    best_odds: dict[str, BestOdds]
    opportunities: tuple[Opportunity, ...]
    source: str
    updated_at_ms: int

    def get_game(self, game_id: str) -> Optional[Game]:
        for game in self.games:
            if game.game_id == game_id:
                return game
        return None

    def opportunities_for(self, game_id: str) -> list[Opportunity]:
        return [opp for opp in self.opportunities if opp.game_id == game_id]

    @property
    def game_ids(self) -> list[str]:
        return [game.game_id for game in self.games]


class OddsStore:
    """Latest snapshot per sport."""

    def __init__(self):
        self._snapshots: dict[str, SportSnapshot] = {}
        self.logger = logger.bind(component="odds_store")

    def get(self, sport: str) -> Optional[SportSnapshot]:
        return self._snapshots.get(sport)

    def put(self, snapshot: SportSnapshot) -> Optional[SportSnapshot]:
        """Publish a snapshot. Returns the one it replaced."""
        previous = self._snapshots.get(snapshot.sport)
        self._snapshots[snapshot.sport] = snapshot
        return previous

    def evict(self, sport: str) -> bool:
        removed = self._snapshots.pop(sport, None) is not None
        if removed:
            self.logger.info("Evicted sport snapshot", sport=sport)
        return removed

    def clear(self) -> int:
        count = len(self._snapshots)
        self._snapshots.clear()
        return count

    def sports(self) -> list[str]:
        return list(self._snapshots)

    def __contains__(self, sport: object) -> bool:
        return sport in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)
