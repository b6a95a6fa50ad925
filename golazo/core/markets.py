import logging
from typing import Dict, List, NamedTuple, Optional, Tuple

from golazo.core.models import FixtureSnapshot, MarketId, OddsQuote

log = logging.getLogger("golazo.markets")


class OddsKey(NamedTuple):
    """Where a market's canonical outcome lives in a bookmaker's odds book."""

    market_key: str
    outcome: str
    point: Optional[float] = None


# Canonical outcome per market; probability always refers to this side
MARKET_ODDS: Dict[MarketId, OddsKey] = {
    MarketId.NEXT_GOAL: OddsKey("next_goal", "Home"),
    MarketId.OVER_05: OddsKey("goals_over_under", "Over", 0.5),
    MarketId.OVER_15: OddsKey("goals_over_under", "Over", 1.5),
    MarketId.OVER_25: OddsKey("goals_over_under", "Over", 2.5),
    MarketId.BTTS: OddsKey("btts", "Yes"),
    MarketId.CORNER_NEXT_10: OddsKey("corner_next_10min", "Yes"),
}

OVER_LINES: Dict[MarketId, float] = {
    MarketId.OVER_05: 0.5,
    MarketId.OVER_15: 1.5,
    MarketId.OVER_25: 2.5,
}


def is_over_market(market: MarketId) -> bool:
    return market in OVER_LINES


def over_line(market: MarketId) -> float:
    return OVER_LINES[market]


def calculate_ev(probability: float, odds: float) -> float:
    """
    Expected value of a unit stake at decimal ``odds``.

    Returns EV as a decimal (0.05 = +5% edge); -1.0 for unusable input.
    """
    try:
        return float(probability) * max(0.0, float(odds)) - 1.0
    except (ValueError, TypeError):
        return -1.0


def _points_match(a: Optional[float], b: Optional[float]) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return abs(float(a) - float(b)) < 1e-6


def _iter_prices(snapshot: FixtureSnapshot, key: OddsKey):
    """Yield (bookmaker, price) for every bookmaker quoting ``key``."""
    for book in snapshot.odds or ():
        outcomes = book.markets.get(key.market_key) or ()
        for outcome in outcomes:
            if outcome.name != key.outcome:
                continue
            if key.point is not None and not _points_match(outcome.point, key.point):
                continue
            if outcome.price and outcome.price > 1.0:
                yield book.name, float(outcome.price)
                break


def best_odds_for_market(snapshot: FixtureSnapshot, market: MarketId) -> Optional[OddsQuote]:
    """Best price across bookmakers for the market's canonical outcome, or None."""
    key = MARKET_ODDS[market]
    per_bookmaker: List[Tuple[str, float]] = list(_iter_prices(snapshot, key))
    if not per_bookmaker:
        return None
    best = max(price for _, price in per_bookmaker)
    return OddsQuote(best_price=best, per_bookmaker=tuple(per_bookmaker))


def first_price(snapshot: FixtureSnapshot, market_key: str, outcome: str,
                point: Optional[float] = None) -> Optional[float]:
    """First quoted price for an outcome, used as a feature input."""
    for _, price in _iter_prices(snapshot, OddsKey(market_key, outcome, point)):
        return price
    return None
