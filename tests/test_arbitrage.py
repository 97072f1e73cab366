"""Tests for arbitrage and middle detection."""

import pytest

from linewatch.engine.arbitrage import build_arbitrage, detect_opportunities, find_middles
from linewatch.engine.consensus import compute_best_odds
from linewatch.models.schemas import (
    ArbitrageOpportunity,
    BestPrice,
    Market,
    MiddleOpportunity,
    OpportunityKind,
    american_to_implied,
)


@pytest.fixture
def arb_game(make_game, make_quote):
    """Best home +120 at one book, best away +130 at another."""
    return make_game(quotes=[
        make_quote("draftkings", moneyline=(120, -150)),
        make_quote("fanduel", moneyline=(-150, 130)),
    ])


class TestArbitrage:

    def test_classic_two_way_arbitrage(self, arb_game):
        opportunities = detect_opportunities(arb_game)
        arbs = [o for o in opportunities if o.kind is OpportunityKind.ARBITRAGE]

        assert len(arbs) == 1
        arb = arbs[0]
        assert isinstance(arb, ArbitrageOpportunity)
        assert arb.market is Market.MONEYLINE
        assert arb.implied_sum == pytest.approx(100 / 220 + 100 / 230)
        assert arb.profit_margin == pytest.approx(12.45, abs=0.01)

        legs = {leg.side: leg for leg in arb.legs}
        assert (legs["home"].price, legs["home"].bookmaker) == (120, "draftkings")
        assert (legs["away"].price, legs["away"].bookmaker) == (130, "fanduel")

    def test_stakes_give_equal_payout(self, arb_game):
        arb = detect_opportunities(arb_game)[0]
        stakes, payout = arb.stakes(100.0)

        assert sum(stakes.values()) == pytest.approx(100.0)
        assert stakes["home"] == pytest.approx(51.11, abs=0.01)
        assert stakes["away"] == pytest.approx(48.89, abs=0.01)
        assert payout == pytest.approx(112.45, abs=0.01)

        # Every outcome pays the same
        assert stakes["home"] * (1 + 120 / 100) == pytest.approx(payout)
        assert stakes["away"] * (1 + 130 / 100) == pytest.approx(payout)

    def test_stake_fractions_sum_to_one(self, arb_game):
        arb = detect_opportunities(arb_game)[0]
        assert sum(leg.stake_fraction for leg in arb.legs) == pytest.approx(1.0)
        assert arb.implied_sum < 1.0

    def test_no_false_arbitrage(self, make_game, make_quote):
        game = make_game(quotes=[
            make_quote("draftkings", moneyline=(-110, -110)),
            make_quote("fanduel", moneyline=(-115, -105)),
        ])
        assert detect_opportunities(game) == []

    def test_exact_boundary_is_not_arbitrage(self):
        sides = {
            "home": BestPrice(price=100, bookmaker="draftkings", bookmaker_name="DraftKings"),
            "away": BestPrice(price=-100, bookmaker="fanduel", bookmaker_name="FanDuel"),
        }
        assert american_to_implied(100) + american_to_implied(-100) == 1.0
        assert build_arbitrage("g", Market.MONEYLINE, sides) is None

    def test_spread_arbitrage_needs_matching_lines(self, make_game, make_quote):
        matching = make_game(quotes=[
            make_quote("draftkings", spread=(-3.5, 110, -130)),
            make_quote("fanduel", spread=(-3.5, -130, 105)),
        ])
        arbs = [o for o in detect_opportunities(matching) if o.kind is OpportunityKind.ARBITRAGE]
        assert len(arbs) == 1
        assert arbs[0].market is Market.SPREAD

        mismatched = make_game(quotes=[
            make_quote("draftkings", spread=(-3.5, 110, -130)),
            make_quote("fanduel", spread=(-3.0, -130, 105)),
        ])
        assert [
            o for o in detect_opportunities(mismatched) if o.kind is OpportunityKind.ARBITRAGE
        ] == []

    def test_uses_given_best_odds(self, arb_game):
        best = compute_best_odds(arb_game)
        assert detect_opportunities(arb_game, best) == detect_opportunities(arb_game)

    def test_to_dict(self, arb_game):
        data = detect_opportunities(arb_game)[0].to_dict()
        assert data["kind"] == "arbitrage"
        assert data["market"] == "moneyline"
        assert len(data["legs"]) == 2


class TestMiddles:

    def test_total_middle(self, make_game, make_quote):
        game = make_game(quotes=[
            make_quote("draftkings", totals=(220.5, -110, -110)),
            make_quote("fanduel", totals=(222.0, -110, -110)),
        ])
        middles = find_middles(game, Market.TOTALS)

        assert len(middles) == 1
        middle = middles[0]
        assert isinstance(middle, MiddleOpportunity)
        assert middle.kind is OpportunityKind.TOTAL_MIDDLE
        assert middle.gap == pytest.approx(1.5)
        assert {middle.bookmaker_a, middle.bookmaker_b} == {"draftkings", "fanduel"}

    def test_spread_middle_at_threshold(self, make_game, make_quote):
        game = make_game(quotes=[
            make_quote("draftkings", spread=(-3.0, -110, -110)),
            make_quote("fanduel", spread=(-4.0, -110, -110)),
        ])
        middles = find_middles(game, Market.SPREAD, threshold=1.0)
        assert len(middles) == 1
        assert middles[0].kind is OpportunityKind.SPREAD_MIDDLE

    def test_small_gap_is_not_a_middle(self, make_game, make_quote):
        game = make_game(quotes=[
            make_quote("draftkings", spread=(-3.0, -110, -110)),
            make_quote("fanduel", spread=(-3.5, -110, -110)),
        ])
        assert find_middles(game, Market.SPREAD) == []

    def test_one_middle_per_pair(self, make_game, make_quote):
        game = make_game(quotes=[
            make_quote("draftkings", totals=(218.0, -110, -110)),
            make_quote("fanduel", totals=(220.0, -110, -110)),
            make_quote("betmgm", totals=(222.0, -110, -110)),
        ])
        assert len(find_middles(game, Market.TOTALS)) == 3

    def test_moneyline_has_no_middles(self, arb_game):
        assert find_middles(arb_game, Market.MONEYLINE) == []

    def test_arbitrage_listed_before_middles(self, make_game, make_quote):
        game = make_game(quotes=[
            make_quote("draftkings", moneyline=(120, -150), totals=(220.0, -110, -110)),
            make_quote("fanduel", moneyline=(-150, 130), totals=(222.0, -110, -110)),
        ])
        kinds = [o.kind for o in detect_opportunities(game)]
        assert kinds == [OpportunityKind.ARBITRAGE, OpportunityKind.TOTAL_MIDDLE]
