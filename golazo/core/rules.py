import logging
import math
from typing import List, Optional, Tuple

from golazo.core.features import is_corner_hotspot, momentum, recent_activity
from golazo.core.markets import is_over_market, over_line
from golazo.core.models import FixtureSnapshot, MarketId, MarketPrediction

log = logging.getLogger("golazo.rules")

FALLBACK = MarketPrediction(probability=0.5, confidence=0.25)

# (low, high) clamp per market; heuristics never claim near-certainty
PROBABILITY_BANDS = {
    MarketId.NEXT_GOAL: (0.10, 0.90),
    MarketId.OVER_05: (0.05, 0.95),
    MarketId.OVER_15: (0.05, 0.95),
    MarketId.OVER_25: (0.05, 0.95),
    MarketId.BTTS: (0.05, 0.95),
    MarketId.CORNER_NEXT_10: (0.10, 0.90),
}

BASE_CONFIDENCE = {
    MarketId.NEXT_GOAL: 0.45,
    MarketId.OVER_05: 0.50,
    MarketId.OVER_15: 0.50,
    MarketId.OVER_25: 0.50,
    MarketId.BTTS: 0.50,
    MarketId.CORNER_NEXT_10: 0.40,
}

CONFIDENCE_PER_FACTOR = 0.08
CONFIDENCE_TIME_BONUS = 0.20
CONFIDENCE_BAND = (0.20, 0.90)

# Possession share a side must exceed before the edge counts
POSSESSION_EDGE = 65


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _sign(value: float) -> float:
    return 1.0 if value > 0 else -1.0


class _Factors:
    """Signed-weight accumulator; positive favours the market's canonical outcome."""

    def __init__(self):
        self.weights: List[Tuple[str, float]] = []

    def fire(self, name: str, weight: float):
        self.weights.append((name, weight))

    @property
    def count(self) -> int:
        return len(self.weights)

    def probability(self) -> float:
        total = sum(abs(w) for _, w in self.weights)
        if total <= 0:
            return 0.5
        net = sum(w for _, w in self.weights)
        return 0.5 + net / (2.0 * total)


class RuleEngine:
    """Deterministic heuristic estimator for every supported market."""

    def evaluate(self, market: MarketId, snapshot: FixtureSnapshot) -> MarketPrediction:
        """Probability and confidence for one market from signed factors."""
        try:
            resolved = self._resolved(market, snapshot)
            if resolved is not None:
                return resolved

            if market == MarketId.NEXT_GOAL:
                factors = self._next_goal(snapshot)
            elif is_over_market(market):
                factors = self._over(snapshot, over_line(market))
            elif market == MarketId.BTTS:
                factors = self._btts(snapshot)
            elif market == MarketId.CORNER_NEXT_10:
                factors = self._corner(snapshot)
            else:
                raise ValueError(f"unsupported market {market!r}")

            lo, hi = PROBABILITY_BANDS[market]
            probability = _clamp(factors.probability(), lo, hi)
            confidence = self._confidence(market, factors.count, snapshot.minute)
            log.debug("[RULES] %s %s factors=%s p=%.3f c=%.3f",
                      snapshot.fixture_id, market.value, factors.weights, probability, confidence)
            return MarketPrediction(probability=probability, confidence=confidence)
        except Exception as e:
            log.warning("[RULES] Evaluation failed for %s/%s: %s",
                        getattr(snapshot, "fixture_id", "?"), market, e)
            return FALLBACK

    def _resolved(self, market: MarketId, snapshot: FixtureSnapshot) -> Optional[MarketPrediction]:
        """Markets already settled by the current score."""
        if is_over_market(market) and snapshot.score.total > over_line(market):
            return MarketPrediction(probability=1.0, confidence=1.0, resolved=True)
        if market == MarketId.BTTS and snapshot.score.home > 0 and snapshot.score.away > 0:
            return MarketPrediction(probability=1.0, confidence=1.0, resolved=True)
        return None

    def _confidence(self, market: MarketId, fired: int, minute: int) -> float:
        conf = (
            BASE_CONFIDENCE[market]
            + CONFIDENCE_PER_FACTOR * fired
            + (min(max(minute, 0), 90) / 90.0) * CONFIDENCE_TIME_BONUS
        )
        return _clamp(conf, *CONFIDENCE_BAND)

    def _next_goal(self, snapshot: FixtureSnapshot) -> _Factors:
        f = _Factors()
        hs, as_ = snapshot.home_stats, snapshot.away_stats

        if hs.possession is not None:
            if hs.possession > POSSESSION_EDGE:
                f.fire("possession_home", 2.0)
            elif 100 - hs.possession > POSSESSION_EDGE:
                f.fire("possession_away", -2.0)

        if hs.shots_on_target is not None and as_.shots_on_target is not None:
            diff = hs.shots_on_target - as_.shots_on_target
            if abs(diff) >= 3:
                f.fire("shots_edge", 2.5 * _sign(diff))

        if hs.corners is not None and as_.corners is not None:
            diff = hs.corners - as_.corners
            if abs(diff) >= 3:
                f.fire("corner_edge", 1.0 * _sign(diff))

        mom = momentum(snapshot)
        if abs(mom.shift) >= 0.3:
            f.fire("momentum", 1.5 * _sign(mom.shift))
        return f

    def _over(self, snapshot: FixtureSnapshot, line: float) -> _Factors:
        f = _Factors()
        minute = snapshot.minute
        total = snapshot.score.total
        needed = max(0, math.ceil(line - total))
        remaining = max(0, 90 - minute)
        hs, as_ = snapshot.home_stats, snapshot.away_stats

        sot = None
        if hs.shots_on_target is not None or as_.shots_on_target is not None:
            sot = (hs.shots_on_target or 0) + (as_.shots_on_target or 0)
        corners = None
        if hs.corners is not None or as_.corners is not None:
            corners = (hs.corners or 0) + (as_.corners or 0)

        if sot is not None and sot >= 6:
            f.fire("shots_volume", 2.0)
        if corners is not None and corners >= 8:
            f.fire("corner_volume", 1.0)
        if remaining < needed * 15:
            f.fire("time_short", -2.0)
        if minute > 0 and (total / minute) * 90 > line:
            f.fire("projected_pace", 1.5)
        if sot is not None and minute >= 30 and sot <= 2:
            f.fire("low_threat", -1.5)

        recent = recent_activity(snapshot)
        if recent.shots_home + recent.shots_away >= 2:
            f.fire("recent_shots", 1.0)
        return f

    def _btts(self, snapshot: FixtureSnapshot) -> _Factors:
        f = _Factors()
        minute = snapshot.minute
        home_scored = snapshot.score.home > 0
        away_scored = snapshot.score.away > 0
        mom = momentum(snapshot)
        hs, as_ = snapshot.home_stats, snapshot.away_stats
        away_possession = None if hs.possession is None else 100 - hs.possession

        # Sides still needing a goal; the weakest of them decides the outcome
        pending = []
        if not home_scored:
            pending.append((hs.shots_on_target, hs.possession, mom.home_attacking))
        if not away_scored:
            pending.append((as_.shots_on_target, away_possession, mom.away_attacking))

        sots = [s for s, _, _ in pending]
        if sots and all(s is not None for s in sots) and min(sots) >= 4:
            f.fire("pending_side_shots", 2.0)
        possessions = [p for _, p, _ in pending]
        if possessions and all(p is not None for p in possessions) and min(possessions) >= 55:
            f.fire("pending_side_possession", 1.0)
        if pending and min(share for _, _, share in pending) >= 0.6:
            f.fire("pending_side_momentum", 1.5)

        if max(0, 90 - minute) < 15:
            f.fire("time_short", -2.0)
        if not home_scored and not away_scored and minute >= 60:
            f.fire("goalless_late", -1.5)
        if home_scored != away_scored:
            f.fire("one_side_scored", 1.0)
        return f

    def _corner(self, snapshot: FixtureSnapshot) -> _Factors:
        f = _Factors()
        minute = snapshot.minute
        hs, as_ = snapshot.home_stats, snapshot.away_stats

        if (hs.corners is not None or as_.corners is not None) and minute > 0:
            rate = ((hs.corners or 0) + (as_.corners or 0)) / minute
            if rate >= 0.12:
                f.fire("corner_rate", 2.0)
            elif rate < 0.05 and minute >= 20:
                f.fire("corner_drought", -2.0)

        recent = recent_activity(snapshot)
        if recent.corners_home + recent.corners_away >= 2:
            f.fire("recent_corners", 1.5)
        if is_corner_hotspot(minute):
            f.fire("hotspot", 1.0)
        if hs.possession is not None and max(hs.possession, 100 - hs.possession) >= 60:
            f.fire("territorial_dominance", 1.0)
        return f

    def predict_potential(self, snapshot: FixtureSnapshot) -> float:
        """Fixture-level opportunity richness in [0, 1]."""
        try:
            score = 5.0
            if snapshot.is_live:
                score += 2.0
                if abs(snapshot.score.home - snapshot.score.away) <= 1:
                    score += 1.0
                if snapshot.minute > 75:
                    score += 1.0
                elif snapshot.minute > 60:
                    score += 0.5
                hs, as_ = snapshot.home_stats, snapshot.away_stats
                corners = (hs.corners or 0) + (as_.corners or 0)
                sot = (hs.shots_on_target or 0) + (as_.shots_on_target or 0)
                if corners > 10 or sot > 8:
                    score += 1.0
            else:
                score -= 1.0
            return _clamp(score / 10.0, 0.0, 1.0)
        except Exception as e:
            log.warning("[RULES] Potential failed for %s: %s", getattr(snapshot, "fixture_id", "?"), e)
            return 0.5
