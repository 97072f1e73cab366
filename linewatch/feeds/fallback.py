"""
Fallback policy over odds sources.

Tries each provider in order and returns the first successful result, so a
provider outage degrades to the next source instead of failing the cycle.
A provider slower than the per-provider timeout counts as failed.
"""

import asyncio
import time
from typing import Optional

import structlog

from linewatch.errors import IngestionError, UpstreamUnavailable
from linewatch.feeds.base import IngestionResult, OddsSource

logger = structlog.get_logger()


class FallbackOddsSource:
    """Ordered chain of OddsSource providers (primary first)."""

    def __init__(self, providers: list[OddsSource], provider_timeout: Optional[float] = None):
        if not providers:
            raise ValueError("FallbackOddsSource needs at least one provider")
        if provider_timeout is not None and provider_timeout <= 0:
            raise ValueError("provider_timeout must be positive")
        self.providers = providers
        self.provider_timeout = provider_timeout
        self.logger = logger.bind(component="fallback_source")
        self._fallback_count = 0

    async def start(self) -> None:
        for provider in self.providers:
            await provider.start()

    async def stop(self) -> None:
        for provider in self.providers:
            await provider.stop()

    async def fetch(self, sport: str) -> IngestionResult:
        """
        Fetch odds from the first provider that succeeds.

        Raises:
            UpstreamUnavailable: every provider failed
        """
        errors: list[str] = []
        for position, provider in enumerate(self.providers):
            try:
                games = await asyncio.wait_for(provider.fetch_odds(sport), self.provider_timeout)
            except asyncio.TimeoutError:
                self.logger.warning(
                    "Provider timed out, trying next",
                    provider=provider.name,
                    sport=sport,
                    timeout=self.provider_timeout,
                )
                errors.append(f"{provider.name}: timed out")
                continue
            except IngestionError as e:
                self.logger.warning(
                    "Provider failed, trying next",
                    provider=provider.name,
                    sport=sport,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                errors.append(f"{provider.name}: {e}")
                continue

            if position > 0:
                self._fallback_count += 1
                self.logger.info("Serving fallback odds", provider=provider.name, sport=sport)

            return IngestionResult(
                sport=sport,
                games=games,
                source=provider.name,
                fetched_at_ms=int(time.time() * 1000),
            )

        raise UpstreamUnavailable("All providers failed: " + "; ".join(errors))

    def get_metrics(self) -> dict:
        return {
            "fallback_count": self._fallback_count,
            "providers": [provider.get_metrics() for provider in self.providers],
        }
