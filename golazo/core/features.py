import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from golazo.core.markets import MARKET_ODDS, first_price, is_over_market, over_line
from golazo.core.models import FixtureSnapshot, MarketId, MatchEvent

log = logging.getLogger("golazo.features")

NEUTRAL = 0.5
OVERROUND = 0.95
RECENT_WINDOW_MIN = 15
BASE_LENGTH = 20

# Declared input ranges; values are clamped before rescaling to [0, 1]
RANGES = {
    "minute": (0.0, 90.0),
    "score": (0.0, 5.0),
    "goal_diff": (-5.0, 5.0),
    "possession": (0.0, 100.0),
    "shots_on_target": (0.0, 20.0),
    "corners": (0.0, 15.0),
    "cards": (0.0, 10.0),
}

TAIL_LENGTHS = {
    MarketId.NEXT_GOAL: 7,
    MarketId.OVER_05: 6,
    MarketId.OVER_15: 6,
    MarketId.OVER_25: 6,
    MarketId.BTTS: 8,
    MarketId.CORNER_NEXT_10: 6,
}

CORNER_HOTSPOTS = ((35, 45), (75, 90))


@dataclass(frozen=True)
class RecentActivity:
    corners_home: int = 0
    corners_away: int = 0
    shots_home: int = 0
    shots_away: int = 0
    cards: int = 0

    @property
    def pressure_home(self) -> int:
        return self.shots_home + self.corners_home

    @property
    def pressure_away(self) -> int:
        return self.shots_away + self.corners_away


@dataclass(frozen=True)
class Momentum:
    home_attacking: float = 0.5
    away_attacking: float = 0.5
    shift: float = 0.0


def normalize(value: Optional[float], kind: str) -> float:
    """Clamp to the declared range and rescale; missing values map to the midpoint."""
    if value is None:
        return NEUTRAL
    lo, hi = RANGES[kind]
    v = min(hi, max(lo, float(value)))
    return (v - lo) / (hi - lo)


def implied_probability(odds: Optional[float]) -> float:
    """Bookmaker-free probability estimate from decimal odds."""
    if not odds or odds < 1.0:
        return NEUTRAL
    return min(1.0, max(0.0, (1.0 / float(odds)) * OVERROUND))


def expected_length(market: Optional[MarketId]) -> int:
    if market is None:
        return BASE_LENGTH
    return BASE_LENGTH + TAIL_LENGTHS[market]


def is_corner_hotspot(minute: int) -> bool:
    return any(start <= minute <= end for start, end in CORNER_HOTSPOTS)


def _is_home_event(snapshot: FixtureSnapshot, event: MatchEvent) -> bool:
    if event.team_id is not None and snapshot.home.id is not None:
        return event.team_id == snapshot.home.id
    return bool(event.team_name) and event.team_name == snapshot.home.name


def recent_activity(snapshot: FixtureSnapshot, window: int = RECENT_WINDOW_MIN) -> RecentActivity:
    """Count corners, shots and cards from events in the last ``window`` minutes."""
    minute = snapshot.minute
    corners_h = corners_a = shots_h = shots_a = cards = 0
    for event in snapshot.events or ():
        if minute - (event.minute or 0) > window:
            continue
        home = _is_home_event(snapshot, event)
        if event.type == "Goal" or event.detail == "Shot on Goal":
            if home:
                shots_h += 1
            else:
                shots_a += 1
        elif event.type == "Card":
            cards += 1
        elif event.type == "Corner":
            if home:
                corners_h += 1
            else:
                corners_a += 1
    return RecentActivity(corners_h, corners_a, shots_h, shots_a, cards)


def momentum(snapshot: FixtureSnapshot, recent: Optional[RecentActivity] = None) -> Momentum:
    """Blend possession imbalance (0.3) with recent-event imbalance (0.7)."""
    recent = recent or recent_activity(snapshot)
    possession = snapshot.home_stats.possession
    possession_factor = 0.0 if possession is None else (float(possession) - 50.0) / 50.0
    possession_factor = min(1.0, max(-1.0, possession_factor))

    total = recent.pressure_home + recent.pressure_away
    events_factor = (recent.pressure_home - recent.pressure_away) / total if total > 0 else 0.0

    combined = possession_factor * 0.3 + events_factor * 0.7
    return Momentum(
        home_attacking=0.5 + combined / 2,
        away_attacking=0.5 - combined / 2,
        shift=combined,
    )


# Heuristic priors standing in for a historical-rate lookup; not measured history

def prior_goal_probability(minute: int, side: str) -> float:
    base = 0.55 if side == "home" else 0.45
    factor = 1.0
    if 40 < minute <= 45:
        factor = 1.3
    elif 75 < minute <= 90:
        factor = 1.5
    return min(1.0, base * factor)


def prior_over_probability(minute: int, total_goals: int, line: float) -> float:
    if total_goals > line:
        return 1.0
    needed = int(np.ceil(line - total_goals))
    if needed <= 0:
        return 1.0
    base = {1: 0.7, 2: 0.4}.get(needed, 0.2)
    time_factor = min(1.0, max(0.0, 90 - minute) / (needed * 30))
    return min(1.0, max(0.0, base * time_factor))


def prior_btts_probability(minute: int, home_scored: bool, away_scored: bool) -> float:
    if home_scored and away_scored:
        return 1.0
    p = max(0, 90 - minute) / 90
    if home_scored or away_scored:
        p = min(1.0, p * 1.5)
    return min(1.0, max(0.0, p))


def prior_corner_probability(minute: int) -> float:
    if minute > 75:
        return 0.75
    if 35 < minute <= 45:
        return 0.7
    return 0.6


def _share(a: Optional[float], b: Optional[float]) -> float:
    if a is None and b is None:
        return NEUTRAL
    a = a or 0
    b = b or 0
    return a / (a + b + 0.001)


class FeatureExtractor:
    """Turns a fixture snapshot into a fixed-length vector per market.

    Layout is a 20-value base block followed by a market-specific tail; the
    length for a market never changes, and malformed input yields a vector of
    that length filled with 0.5.
    """

    def extract(self, snapshot: FixtureSnapshot, market: Optional[MarketId]) -> np.ndarray:
        try:
            values = self._base(snapshot) + self._tail(snapshot, market)
            vector = np.asarray(values, dtype=np.float64)
            if vector.shape[0] != expected_length(market) or not np.all(np.isfinite(vector)):
                raise ValueError(f"bad feature vector shape={vector.shape}")
            return vector
        except Exception as e:
            log.warning("[FEATURES] Extraction failed for %s/%s: %s",
                        getattr(snapshot, "fixture_id", "?"), market, e)
            return np.full(expected_length(market), NEUTRAL, dtype=np.float64)

    def _base(self, snapshot: FixtureSnapshot) -> List[float]:
        minute = snapshot.minute
        gh, ga = snapshot.score.home, snapshot.score.away
        hs, as_ = snapshot.home_stats, snapshot.away_stats
        recent = recent_activity(snapshot)
        mom = momentum(snapshot, recent)

        return [
            normalize(minute, "minute"),
            min(1.0, max(0.0, minute / 90.0)),
            normalize(gh, "score"),
            normalize(ga, "score"),
            normalize(gh - ga, "goal_diff"),
            normalize(gh + ga, "score"),
            normalize(hs.possession, "possession"),
            normalize(hs.shots_on_target, "shots_on_target"),
            normalize(as_.shots_on_target, "shots_on_target"),
            normalize(hs.corners, "corners"),
            normalize(as_.corners, "corners"),
            normalize(hs.yellow_cards, "cards"),
            normalize(as_.yellow_cards, "cards"),
            normalize(recent.corners_home, "corners"),
            normalize(recent.corners_away, "corners"),
            normalize(recent.shots_home, "shots_on_target"),
            normalize(recent.shots_away, "shots_on_target"),
            mom.home_attacking,
            mom.away_attacking,
            # shift is signed; rescaled so every feature sits in [0, 1]
            (mom.shift + 1.0) / 2.0,
        ]

    def _tail(self, snapshot: FixtureSnapshot, market: Optional[MarketId]) -> List[float]:
        if market is None:
            return []
        if market == MarketId.NEXT_GOAL:
            return self._next_goal(snapshot)
        if is_over_market(market):
            return self._over(snapshot, market)
        if market == MarketId.BTTS:
            return self._btts(snapshot)
        if market == MarketId.CORNER_NEXT_10:
            return self._corner(snapshot)
        raise ValueError(f"unsupported market {market!r}")

    def _next_goal(self, snapshot: FixtureSnapshot) -> List[float]:
        minute = snapshot.minute
        hs, as_ = snapshot.home_stats, snapshot.away_stats
        return [
            _share(hs.shots_on_target, as_.shots_on_target),
            _share(hs.corners, as_.corners),
            implied_probability(first_price(snapshot, "h2h", "Home")),
            implied_probability(first_price(snapshot, "h2h", "Draw")),
            implied_probability(first_price(snapshot, "h2h", "Away")),
            prior_goal_probability(minute, "home"),
            prior_goal_probability(minute, "away"),
        ]

    def _over(self, snapshot: FixtureSnapshot, market: MarketId) -> List[float]:
        minute = snapshot.minute
        line = over_line(market)
        total = snapshot.score.total
        needed = max(0, int(np.ceil(line - total)))
        projected = (total / minute) * 90 if minute > 0 else 0.0
        key = MARKET_ODDS[market]
        return [
            normalize(total, "score"),
            min(1.0, needed / 3.0),
            max(0, 90 - minute) / 90.0,
            normalize(projected, "score"),
            implied_probability(first_price(snapshot, key.market_key, key.outcome, key.point)),
            prior_over_probability(minute, total, line),
        ]

    def _btts(self, snapshot: FixtureSnapshot) -> List[float]:
        minute = snapshot.minute
        home_scored = snapshot.score.home > 0
        away_scored = snapshot.score.away > 0
        hs, as_ = snapshot.home_stats, snapshot.away_stats

        def attack(scored: bool, sot: Optional[int]) -> float:
            if scored:
                return 1.0
            return NEUTRAL if sot is None else min(1.0, sot / 10.0)

        return [
            float(home_scored),
            float(away_scored),
            float(home_scored and away_scored),
            attack(home_scored, hs.shots_on_target),
            attack(away_scored, as_.shots_on_target),
            max(0, 90 - minute) / 90.0,
            implied_probability(first_price(snapshot, "btts", "Yes")),
            prior_btts_probability(minute, home_scored, away_scored),
        ]

    def _corner(self, snapshot: FixtureSnapshot) -> List[float]:
        minute = snapshot.minute
        hs, as_ = snapshot.home_stats, snapshot.away_stats
        total = None if hs.corners is None and as_.corners is None else (hs.corners or 0) + (as_.corners or 0)
        rate = (total or 0) / minute if minute > 0 else 0.0
        recent = recent_activity(snapshot)
        return [
            normalize(total, "corners"),
            min(1.0, rate / 0.2),
            normalize(recent.pressure_home, "corners"),
            normalize(recent.pressure_away, "corners"),
            1.0 if is_corner_hotspot(minute) else 0.0,
            prior_corner_probability(minute),
        ]
