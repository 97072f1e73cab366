"""
Odds data sources.

- The Odds API: live prices from US sportsbooks (primary)
- Synthetic: generated demo games (fallback)
"""

from linewatch.feeds.base import FeedHealth, IngestionResult, OddsSource
from linewatch.feeds.fallback import FallbackOddsSource
from linewatch.feeds.odds_api import OddsAPIFeed, normalize_event
from linewatch.feeds.synthetic import SyntheticOddsFeed

__all__ = [
    "FeedHealth",
    "IngestionResult",
    "OddsSource",
    "FallbackOddsSource",
    "OddsAPIFeed",
    "normalize_event",
    "SyntheticOddsFeed",
]
