"""
Odds analysis engine.

1. Best price and consensus per market/side
2. Arbitrage and middle detection
3. Line movement history and per-cycle quote diffs
"""

from linewatch.engine.consensus import compute_best_odds, population_std_dev
from linewatch.engine.arbitrage import detect_opportunities, build_arbitrage
from linewatch.engine.movement import LineMovementTracker, diff_quotes

__all__ = [
    "compute_best_odds",
    "population_std_dev",
    "detect_opportunities",
    "build_arbitrage",
    "LineMovementTracker",
    "diff_quotes",
]
