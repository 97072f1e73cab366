"""
Real-time odds aggregation and line-movement engine.

Ingests odds from many sportsbooks per game, computes best-price and
consensus views, detects arbitrage and middles, tracks line movement and
pushes updates to WebSocket subscribers.

Layout:
- models/: Sportsbook registry and domain schemas
- feeds/: Odds sources (The Odds API, synthetic demo data, fallback policy)
- engine/: Best odds, opportunity detection, line movement
- live/: Snapshot store, scheduler, push events, WebSocket server
"""

__version__ = "0.1.0"
