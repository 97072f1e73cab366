"""
Live Odds Service - Main Entry Point.

Wires the pipeline and serves it over WebSocket:
1. Fetch odds (The Odds API, falling back to synthetic demo data)
2. Best price + consensus per market/side
3. Arbitrage and middle detection
4. Line movement tracking and steam alerts
5. Push snapshots to subscribers every few seconds

Usage:
    python -m linewatch.main

Environment Variables:
    ODDS_API__API_KEY                  - The Odds API key (demo data without it)
    SCHEDULER__ODDS_INTERVAL_SECONDS   - Refresh interval (default: 5)
    SERVER__PORT                       - WebSocket port (default: 8765)
    SERVER__ADMIN_TOKEN                - Token for cache invalidation
"""

import asyncio
import signal
import time

from dotenv import load_dotenv

load_dotenv()

import structlog

from config.settings import Settings, settings
from linewatch.engine.movement import LineMovementTracker
from linewatch.feeds.base import OddsSource
from linewatch.feeds.fallback import FallbackOddsSource
from linewatch.feeds.odds_api import OddsAPIFeed
from linewatch.feeds.synthetic import SyntheticOddsFeed
from linewatch.live.scheduler import LiveUpdateScheduler
from linewatch.live.server import OddsWebSocketServer
from linewatch.live.store import OddsStore
from linewatch.models.sportsbooks import SportsbookRegistry, registry as default_registry
from linewatch.utils.logging import setup_logging

logger = structlog.get_logger()


def build_source(config: Settings, registry: SportsbookRegistry) -> FallbackOddsSource:
    """Primary provider first, synthetic demo data last."""
    providers: list[OddsSource] = []
    if config.odds_api.api_key:
        providers.append(OddsAPIFeed(config.odds_api, registry=registry))
    else:
        logger.warning("No Odds API key configured, serving demo data")

    if config.scheduler.fallback_to_synthetic or not providers:
        providers.append(SyntheticOddsFeed(registry=registry, seed=config.scheduler.synthetic_seed))

    return FallbackOddsSource(providers, provider_timeout=config.scheduler.provider_timeout_seconds)


class OddsService:
    """
    Live odds service.

    Owns the source, store, tracker, scheduler and WebSocket server, and
    tears them down in reverse order on shutdown.
    """

    def __init__(self, config: Settings = settings, registry: SportsbookRegistry = default_registry):
        self.settings = config
        self.logger = logger.bind(component="odds_service")

        self.registry = registry
        self.source = build_source(config, registry)
        self.store = OddsStore()
        self.tracker = LineMovementTracker(
            max_history=config.detection.history_size,
            steam_threshold=config.detection.steam_threshold,
        )
        self.scheduler = LiveUpdateScheduler(
            source=self.source,
            store=self.store,
            tracker=self.tracker,
            registry=registry,
            settings=config,
        )
        self.server = OddsWebSocketServer(self.scheduler, config.server)

        self._shutdown_event = asyncio.Event()
        self._start_time_ms = 0

    async def start(self) -> None:
        """Run until shutdown is requested."""
        self.logger.info(
            "Starting odds service",
            sports=self.settings.scheduler.sports,
            sportsbooks=len(self.registry),
            providers=[p.name for p in self.source.providers],
            interval_seconds=self.settings.scheduler.odds_interval_seconds,
        )
        self._start_time_ms = int(time.time() * 1000)

        await self.source.start()
        await self.server.start()

        status_task = None
        if self.settings.server.status_interval_seconds > 0:
            status_task = asyncio.create_task(self._status_loop())

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            self.logger.info("Service cancelled")
        finally:
            if status_task:
                status_task.cancel()
                await asyncio.gather(status_task, return_exceptions=True)
            await self.stop()

    async def stop(self) -> None:
        self.logger.info("Stopping odds service...")
        await self.server.stop()
        await self.scheduler.stop()
        await self.source.stop()

        runtime_seconds = (int(time.time() * 1000) - self._start_time_ms) / 1000
        self.logger.info("Odds service stopped", runtime_minutes=round(runtime_seconds / 60, 1))

    def shutdown(self) -> None:
        """Trigger graceful shutdown."""
        self._shutdown_event.set()

    async def _status_loop(self) -> None:
        """Log scheduler and server metrics periodically."""
        while True:
            await asyncio.sleep(self.settings.server.status_interval_seconds)
            scheduler_metrics = self.scheduler.get_metrics()
            self.logger.info(
                "Status",
                active_sports=scheduler_metrics["active_sports"],
                subscriptions=scheduler_metrics["subscriptions"],
                cycles=scheduler_metrics["cycles"],
                failed_cycles=scheduler_metrics["failed_cycles"],
                events_sent=scheduler_metrics["events_sent"],
                fallbacks=scheduler_metrics["source"]["fallback_count"],
                connections=self.server.get_metrics()["connections"],
            )


def main():
    """Main entry point."""
    setup_logging(settings.log_level, json_logs=settings.json_logs)

    async def run() -> None:
        service = OddsService()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, service.shutdown)

        await service.start()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.warning("Interrupted")


if __name__ == "__main__":
    main()
