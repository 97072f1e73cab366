"""
Base classes for odds sources.
Every provider (live API, synthetic demo data) implements the same contract.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog

from linewatch.models.schemas import Game

logger = structlog.get_logger()


@dataclass
class FeedHealth:
    """Health status of an odds source."""
    connected: bool = False
    last_success_ms: int = 0
    error_count: int = 0
    consecutive_failures: int = 0

    def record_success(self) -> None:
        self.connected = True
        self.last_success_ms = int(time.time() * 1000)
        self.consecutive_failures = 0

    def record_failure(self) -> None:
        self.error_count += 1
        self.consecutive_failures += 1

    @property
    def age_ms(self) -> int:
        """Age of the last successful fetch in milliseconds."""
        if self.last_success_ms == 0:
            return -1
        return int(time.time() * 1000) - self.last_success_ms


@dataclass(frozen=True)
class IngestionResult:
    """Games fetched for one sport and the source that produced them."""
    sport: str
    games: list[Game]
    source: str
    fetched_at_ms: int


class OddsSource(ABC):
    """
    A provider of normalized per-game odds.

    `fetch_odds` returns games in provider order or raises
    UpstreamUnavailable / InvalidResponse.
    """

    def __init__(self, name: str):
        self.name = name
        self.health = FeedHealth()
        self.logger = logger.bind(feed=name)

    @abstractmethod
    async def fetch_odds(self, sport: str) -> list[Game]:
        """Fetch and normalize odds for a sport."""

    async def start(self) -> None:
        """Open connections. No-op by default."""

    async def stop(self) -> None:
        """Release connections. No-op by default."""

    def get_metrics(self) -> dict:
        return {
            "name": self.name,
            "connected": self.health.connected,
            "error_count": self.health.error_count,
            "consecutive_failures": self.health.consecutive_failures,
            "age_ms": self.health.age_ms,
        }
