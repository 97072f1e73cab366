"""
Best-price and consensus calculator.

For each market/side, picks the highest American price across all
bookmakers and measures how much the books agree (population std dev).
Pure functions of the current quote set, no hidden state.
"""

import math
from typing import Optional

from linewatch.models.schemas import (
    BestOdds,
    BestPrice,
    Game,
    Market,
    SideConsensus,
)

DEFAULT_CONSENSUS_TOLERANCE = 10.0


def population_std_dev(values: list[float]) -> float:
    """Population standard deviation (0.0 for fewer than 2 values)."""
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def _side_consensus(prices: list[int], tolerance: float) -> Optional[SideConsensus]:
    if not prices:
        return None
    std_dev = population_std_dev(prices)
    return SideConsensus(
        mean=sum(prices) / len(prices),
        std_dev=std_dev,
        books_count=len(prices),
        is_consensus=std_dev <= tolerance,
    )


def compute_best_odds(
    game: Game,
    consensus_tolerance: float = DEFAULT_CONSENSUS_TOLERANCE,
) -> BestOdds:
    """
    Best price per market/side with the winning bookmaker attributed.

    Ties go to the first bookmaker in iteration order (strictly greater
    replaces), so identical input ordering gives identical output.
    A game with no quotes yields all sides None.
    """
    best = BestOdds(bookmaker_count=len(game.quotes))

    for market in Market:
        for side in market.sides:
            winner: Optional[BestPrice] = None
            prices: list[int] = []

            for book_key, quote in game.quotes.items():
                price = quote.get_price(market, side)
                if price is None:
                    continue
                prices.append(price.price)
                if winner is None or price.price > winner.price:
                    winner = BestPrice(
                        price=price.price,
                        bookmaker=book_key,
                        bookmaker_name=quote.name,
                        line=price.line,
                    )

            best.prices[market][side] = winner
            best.consensus[market][side] = _side_consensus(prices, consensus_tolerance)

    return best
