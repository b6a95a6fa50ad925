import pytest

from golazo.core.markets import best_odds_for_market, calculate_ev, first_price, over_line
from golazo.core.models import MarketId

from conftest import build_book, build_snapshot


def test_calculate_ev():
    assert calculate_ev(0.6, 2.0) == pytest.approx(0.2)
    assert calculate_ev(0.5, 1.5) == pytest.approx(-0.25)
    assert calculate_ev(0.7, -3) == -1.0
    assert calculate_ev("x", 2.0) == -1.0


def test_best_odds_across_bookmakers():
    snapshot = build_snapshot(odds=[
        build_book("Bet365", btts=[("Yes", 1.80), ("No", 2.0)]),
        build_book("Pinnacle", btts=[("Yes", 1.92)]),
        build_book("Stale", btts=[("Yes", 1.0)]),
    ])
    quote = best_odds_for_market(snapshot, MarketId.BTTS)
    assert quote.best_price == pytest.approx(1.92)
    assert quote.per_bookmaker == (("Bet365", 1.80), ("Pinnacle", 1.92))


def test_over_odds_match_the_line():
    snapshot = build_snapshot(odds=[build_book(goals_over_under=[
        ("Over", 1.25, 0.5), ("Over", 1.85, 1.5), ("Under", 1.95, 1.5), ("Over", 3.1, 2.5),
    ])])
    assert best_odds_for_market(snapshot, MarketId.OVER_05).best_price == 1.25
    assert best_odds_for_market(snapshot, MarketId.OVER_15).best_price == 1.85
    assert best_odds_for_market(snapshot, MarketId.OVER_25).best_price == 3.1
    assert over_line(MarketId.OVER_15) == 1.5


def test_missing_market_has_no_quote():
    snapshot = build_snapshot(odds=[build_book(h2h=[("Home", 2.0)])])
    assert best_odds_for_market(snapshot, MarketId.CORNER_NEXT_10) is None
    assert best_odds_for_market(build_snapshot(), MarketId.NEXT_GOAL) is None
    assert first_price(snapshot, "h2h", "Home") == 2.0
    assert first_price(snapshot, "h2h", "Away") is None
