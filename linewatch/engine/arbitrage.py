"""
Arbitrage and middle detection.

Arbitrage: best prices on both sides of a two-way market whose implied
probabilities sum below 100%. Staking each side in proportion to its implied
probability locks in the same payout whatever the result.

Middle: two books posting spread/total lines at least `middle_threshold`
points apart. No guaranteed profit, but both bets win if the result lands
in the gap.
"""

from itertools import combinations
from typing import Optional

import structlog

from linewatch.engine.consensus import compute_best_odds
from linewatch.models.schemas import (
    ArbitrageLeg,
    ArbitrageOpportunity,
    BestOdds,
    BestPrice,
    Game,
    Market,
    MiddleOpportunity,
    Opportunity,
    OpportunityKind,
    american_to_implied,
)

logger = structlog.get_logger()

# Tolerance for float comparisons on probability sums and line gaps
EPSILON = 1e-9

DEFAULT_MIDDLE_THRESHOLD = 1.0


def build_arbitrage(
    game_id: str,
    market: Market,
    sides: dict[str, BestPrice],
    epsilon: float = EPSILON,
) -> Optional[ArbitrageOpportunity]:
    """
    Arbitrage across the given best prices, or None.

    The sum-to-1.0 boundary is strict: a sum of exactly 1.0 (within
    epsilon) is not an opportunity.
    """
    implied = {side: american_to_implied(best.price) for side, best in sides.items()}
    total = sum(implied.values())
    if total <= 0 or total >= 1.0 - epsilon:
        return None

    legs = tuple(
        ArbitrageLeg(
            side=side,
            price=best.price,
            bookmaker=best.bookmaker,
            bookmaker_name=best.bookmaker_name,
            implied_prob=implied[side],
            stake_fraction=implied[side] / total,
            line=best.line,
        )
        for side, best in sides.items()
    )
    return ArbitrageOpportunity(
        game_id=game_id,
        market=market,
        legs=legs,
        implied_sum=total,
        profit_margin=(1 / total - 1) * 100,
    )


def _lines_pair_up(market: Market, first: BestPrice, second: BestPrice) -> bool:
    """Two-way spread/total bets only cover every outcome on matching lines."""
    if market is Market.MONEYLINE:
        return True
    if first.line is None or second.line is None:
        return False
    if market is Market.SPREAD:
        return abs(first.line + second.line) < EPSILON
    return abs(first.line - second.line) < EPSILON


def find_arbitrage(game_id: str, best: BestOdds, epsilon: float = EPSILON) -> list[ArbitrageOpportunity]:
    opportunities = []
    for market in Market:
        first_side, second_side = market.sides
        first = best.get(market, first_side)
        second = best.get(market, second_side)
        if first is None or second is None:
            continue
        if not _lines_pair_up(market, first, second):
            continue
        arb = build_arbitrage(game_id, market, {first_side: first, second_side: second}, epsilon)
        if arb:
            opportunities.append(arb)
    return opportunities


def find_middles(
    game: Game,
    market: Market,
    threshold: float = DEFAULT_MIDDLE_THRESHOLD,
) -> list[MiddleOpportunity]:
    """Every pair of books whose lines differ by at least `threshold`."""
    if market is Market.MONEYLINE:
        return []

    # Spreads compare the home line, totals the over line
    side = market.sides[0]
    kind = OpportunityKind.SPREAD_MIDDLE if market is Market.SPREAD else OpportunityKind.TOTAL_MIDDLE

    lines = []
    for book_key, quote in game.quotes.items():
        price = quote.get_price(market, side)
        if price is not None and price.line is not None:
            lines.append((book_key, price.line))

    middles = []
    for (book_a, line_a), (book_b, line_b) in combinations(lines, 2):
        gap = abs(line_a - line_b)
        if gap >= threshold - EPSILON:
            middles.append(MiddleOpportunity(
                kind=kind,
                game_id=game.game_id,
                market=market,
                bookmaker_a=book_a,
                bookmaker_b=book_b,
                line_a=line_a,
                line_b=line_b,
                gap=gap,
            ))
    return middles


def detect_opportunities(
    game: Game,
    best_odds: Optional[BestOdds] = None,
    middle_threshold: float = DEFAULT_MIDDLE_THRESHOLD,
) -> list[Opportunity]:
    """Arbitrage opportunities first, then spread and total middles. Possibly empty."""
    best = best_odds or compute_best_odds(game)

    opportunities: list[Opportunity] = []
    opportunities.extend(find_arbitrage(game.game_id, best))
    opportunities.extend(find_middles(game, Market.SPREAD, middle_threshold))
    opportunities.extend(find_middles(game, Market.TOTALS, middle_threshold))

    if opportunities:
        logger.debug(
            "Opportunities detected",
            game_id=game.game_id,
            arbitrage=sum(1 for o in opportunities if o.kind is OpportunityKind.ARBITRAGE),
            middles=sum(1 for o in opportunities if o.kind is not OpportunityKind.ARBITRAGE),
        )
    return opportunities
