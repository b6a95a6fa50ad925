import dataclasses
import logging
import math
from typing import Dict, Iterable, List, NamedTuple, Optional

from golazo.core.config import DetectionConfig, TierSettings, default_tiers
from golazo.core.features import momentum, recent_activity
from golazo.core.markets import best_odds_for_market, calculate_ev, is_over_market, over_line
from golazo.core.models import (
    FixtureSnapshot, MarketId, MarketPrediction, Opportunity, OpportunityPrediction,
    OddsQuote, Tier,
)
from golazo.core.predictors import PredictionFusionEngine
from golazo.services.interfaces import FixtureDataSource, FixtureRepository
from golazo.utils.concurrency import call_with_timeout

log = logging.getLogger("golazo.detector")


class Candidate(NamedTuple):
    market: MarketId
    prediction: MarketPrediction
    odds: OddsQuote
    expected_value: float


def _pct(value: float) -> int:
    return int(round(value * 100))


class _KeyStats:
    """Display values for justification lines; unreported stats read as even/zero."""

    def __init__(self, snapshot: FixtureSnapshot):
        hs, as_ = snapshot.home_stats, snapshot.away_stats
        self.possession_home = int(round(hs.possession)) if hs.possession is not None else 50
        self.possession_away = 100 - self.possession_home
        self.sot_home = hs.shots_on_target or 0
        self.sot_away = as_.shots_on_target or 0
        self.corners_home = hs.corners or 0
        self.corners_away = as_.corners or 0
        self.total_sot = self.sot_home + self.sot_away
        self.total_corners = self.corners_home + self.corners_away
        minute = max(1, snapshot.minute)
        self.sot_per_min = self.total_sot / minute
        self.corners_per_min = self.total_corners / minute


class OpportunityDetector:
    """Finds the single best positive-EV market for a fixture and explains it."""

    def __init__(self, source: FixtureDataSource, repository: FixtureRepository,
                 engine: PredictionFusionEngine,
                 config: Optional[DetectionConfig] = None,
                 tiers: Optional[Dict[Tier, TierSettings]] = None,
                 upstream_timeout: float = 10.0):
        self.source = source
        self.repository = repository
        self.engine = engine
        self.config = config or DetectionConfig()
        self.tiers = tiers or default_tiers()
        self.upstream_timeout = upstream_timeout

    # ---------- public ----------

    def detect(self, fixture_id: str, tier: Tier) -> Optional[Opportunity]:
        """Best opportunity for one tier, or None."""
        return self.detect_tiers(fixture_id, [tier]).get(tier)

    def detect_tiers(self, fixture_id: str, tiers: Iterable[Tier]) -> Dict[Tier, Opportunity]:
        """Evaluate once and gate the same candidates for each tier."""
        try:
            snapshot = self.get_snapshot(fixture_id)
            if snapshot is None:
                log.warning("[DETECT] No data for fixture %s", fixture_id)
                return {}

            candidates = self.evaluate_markets(snapshot)
            found: Dict[Tier, Opportunity] = {}
            for tier in tiers:
                best = self.pick_best(self.filter_by_confidence(candidates, tier))
                if best is None:
                    continue
                found[tier] = self.build_opportunity(snapshot, best)
                log.info("[DETECT] %s tier=%s market=%s p=%.3f c=%.3f ev=%.3f odds=%.2f",
                         fixture_id, tier.value, best.market.value,
                         best.prediction.probability, best.prediction.confidence,
                         best.expected_value, best.odds.best_price)
            return found
        except Exception as e:
            log.exception("[DETECT] Detection failed for %s: %s", fixture_id, e)
            return {}

    # ---------- snapshot ----------

    def get_snapshot(self, fixture_id: str) -> Optional[FixtureSnapshot]:
        """Fresh detail merged over the stored copy; the stored copy alone if the fetch fails."""
        stored = None
        try:
            stored = self.repository.get_by_id(fixture_id)
        except Exception as e:
            log.warning("[DETECT] Stored lookup failed for %s: %s", fixture_id, e)

        fresh = None
        try:
            fresh = call_with_timeout(self.source.get_fixture_detail, self.upstream_timeout, fixture_id)
        except Exception as e:
            log.warning("[DETECT] Fresh fetch failed for %s: %s", fixture_id, e)

        if fresh is None:
            return stored

        merged = self._merge(fresh, stored) if stored is not None else fresh
        try:
            self.repository.upsert(merged)
        except Exception as e:
            log.warning("[DETECT] Could not store %s: %s", fixture_id, e)
        return merged

    @staticmethod
    def _merge(fresh: FixtureSnapshot, stored: FixtureSnapshot) -> FixtureSnapshot:
        changes = {}
        if not fresh.league.name and stored.league.name:
            changes["league"] = stored.league
        if not fresh.home.name and stored.home.name:
            changes["home"] = stored.home
        if not fresh.away.name and stored.away.name:
            changes["away"] = stored.away
        if not fresh.has_statistics and stored.has_statistics:
            changes["home_stats"] = stored.home_stats
            changes["away_stats"] = stored.away_stats
        if not fresh.events and stored.events:
            changes["events"] = stored.events
        if not fresh.odds and stored.odds:
            changes["odds"] = stored.odds
        return dataclasses.replace(fresh, **changes) if changes else fresh

    # ---------- evaluation ----------

    def predict_market(self, market: MarketId, snapshot: FixtureSnapshot) -> MarketPrediction:
        try:
            return self.engine.predict(market, snapshot)
        except Exception as e:
            log.warning("[DETECT] Fusion failed for %s/%s, using rules: %s",
                        snapshot.fixture_id, market.value, e)
            return self.engine.rules.evaluate(market, snapshot)

    def evaluate_markets(self, snapshot: FixtureSnapshot) -> List[Candidate]:
        """All markets clearing the minimum EV, in configured market order."""
        candidates: List[Candidate] = []
        for market in self.config.markets:
            try:
                odds = best_odds_for_market(snapshot, market)
                if odds is None:
                    log.debug("[DETECT] %s %s: no odds", snapshot.fixture_id, market.value)
                    continue
                prediction = self.predict_market(market, snapshot)
                ev = calculate_ev(prediction.probability, odds.best_price)
                if ev >= self.config.min_expected_value:
                    candidates.append(Candidate(market, prediction, odds, ev))
                else:
                    log.debug("[DETECT] %s %s: ev=%.3f below %.3f", snapshot.fixture_id,
                              market.value, ev, self.config.min_expected_value)
            except Exception as e:
                log.warning("[DETECT] Market %s failed for %s: %s",
                            market.value, snapshot.fixture_id, e)
        return candidates

    def filter_by_confidence(self, candidates: List[Candidate], tier: Tier) -> List[Candidate]:
        """Candidates meeting the tier's confidence threshold."""
        threshold = self.tiers[tier].confidence_threshold
        return [c for c in candidates if c.prediction.confidence >= threshold]

    @staticmethod
    def pick_best(candidates: List[Candidate]) -> Optional[Candidate]:
        """Highest EV, then highest confidence."""
        if not candidates:
            return None
        # max keeps the first of equal keys, so market order breaks remaining ties
        return max(candidates, key=lambda c: (c.expected_value, c.prediction.confidence))

    def build_opportunity(self, snapshot: FixtureSnapshot, candidate: Candidate) -> Opportunity:
        p = candidate.prediction
        try:
            context = self.build_context(snapshot, candidate.market, p)
        except Exception as e:
            log.warning("[DETECT] Context failed for %s: %s", snapshot.fixture_id, e)
            context = [
                f"Match: {snapshot.label()}",
                f"Minute: {snapshot.minute}",
                f"Score: {snapshot.score.home} - {snapshot.score.away}",
            ]
        return Opportunity(
            market=candidate.market,
            fixture_id=snapshot.fixture_id,
            home=snapshot.home,
            away=snapshot.away,
            minute=snapshot.minute,
            score=snapshot.score,
            prediction=OpportunityPrediction(
                probability=p.probability,
                confidence=p.confidence,
                expected_value=candidate.expected_value,
            ),
            odds=candidate.odds,
            context=context,
        )

    # ---------- justification ----------

    def build_context(self, snapshot: FixtureSnapshot, market: MarketId,
                      prediction: MarketPrediction) -> List[str]:
        """Justification lines for the picked market."""
        home, away = snapshot.home.name or "Home", snapshot.away.name or "Away"
        lines = [f"{home} {snapshot.score.home} - {snapshot.score.away} {away} (Min {snapshot.minute})"]
        stats = _KeyStats(snapshot)

        if market == MarketId.NEXT_GOAL:
            lines += self._next_goal_context(snapshot, stats, prediction)
        elif is_over_market(market):
            lines += self._over_context(snapshot, stats, prediction, over_line(market))
        elif market == MarketId.BTTS:
            lines += self._btts_context(snapshot, stats, prediction)
        elif market == MarketId.CORNER_NEXT_10:
            lines += self._corner_context(snapshot, stats, prediction)
        return lines

    def _next_goal_context(self, snapshot, stats: _KeyStats, prediction: MarketPrediction) -> List[str]:
        # The priced outcome is always the home side scoring next
        home, away = snapshot.home.name, snapshot.away.name
        lines = [
            f"{home} has {stats.possession_home}% possession",
            f"{stats.sot_home} shots on target vs {stats.sot_away} for {away}",
        ]
        if stats.corners_home > stats.corners_away:
            lines.append(f"Corner dominance: {stats.corners_home} vs {stats.corners_away}")

        recent = recent_activity(snapshot)
        if momentum(snapshot, recent).home_attacking > 0.5:
            lines.append(f"Momentum has been with {home} in recent minutes")
        if recent.corners_home > 2:
            lines.append(f"{recent.corners_home} {home} corners in the last 15 minutes")
        if recent.shots_home > 2:
            lines.append(f"{recent.shots_home} recent {home} shots")

        if snapshot.minute > 75:
            lines.append("Critical phase: final minutes of the match")
        elif snapshot.minute > 60:
            lines.append("Late stage of the match")

        lines.append(f"Estimated (heuristic, not measured history): {home} scores next "
                     f"about {_pct(prediction.probability)}% of the time in similar situations")
        return lines

    def _over_context(self, snapshot, stats: _KeyStats, prediction: MarketPrediction,
                      line: float) -> List[str]:
        total = snapshot.score.total
        if prediction.resolved:
            return [f"Total goals: {total}", f"Line of {line} already cleared"]

        needed = max(0, math.ceil(line - total))
        minute = snapshot.minute
        lines = [
            f"Total goals so far: {total}",
            f"{needed} more goal(s) needed to clear {line}",
            f"Shots on target (both teams): {stats.total_sot}",
            f"Current pace: {(total / max(1, minute)) * 90:.1f} goals per 90 minutes",
        ]
        if stats.total_corners > 8:
            lines.append(f"High attacking activity: {stats.total_corners} corners in the match")
        if stats.sot_per_min > 0.2:
            lines.append("Attacking tempo above average")
        minutes_left = max(0, 90 - minute)
        if minutes_left < 15:
            lines.append(f"{minutes_left} minutes left to find {needed} goal(s)")
        lines.append(f"Estimated (heuristic, not measured history): {_pct(prediction.probability)}% "
                     f"chance to go over {line} goals")
        return lines

    def _btts_context(self, snapshot, stats: _KeyStats, prediction: MarketPrediction) -> List[str]:
        home_scored = snapshot.score.home > 0
        away_scored = snapshot.score.away > 0
        if home_scored and away_scored:
            return ["Both teams have already scored", "Prediction confirmed"]

        home, away = snapshot.home.name, snapshot.away.name
        if not home_scored:
            needed = home
            lines = [
                f"{needed} needs to score for the prediction to land",
                f"{home} has {stats.possession_home}% possession",
                f"{home} has {stats.sot_home} shots on target",
                f"{home} has won {stats.corners_home} corners",
            ]
        else:
            needed = away
            lines = [
                f"{needed} needs to score for the prediction to land",
                f"{away} has {stats.possession_away}% possession",
                f"{away} has {stats.sot_away} shots on target",
                f"{away} has won {stats.corners_away} corners",
            ]
        if not home_scored and not away_scored:
            lines.append(f"{away} also still needs a goal")
        lines.append(f"{max(0, 90 - snapshot.minute)} minutes left for {needed} to score")
        lines.append(f"Estimated (heuristic, not measured history): {_pct(prediction.probability)}% "
                     f"chance both teams score")
        return lines

    def _corner_context(self, snapshot, stats: _KeyStats, prediction: MarketPrediction) -> List[str]:
        home, away = snapshot.home.name, snapshot.away.name
        lines = [
            f"Total corners in the match: {stats.total_corners}",
            f"Corner split: {home} ({stats.corners_home}) - {away} ({stats.corners_away})",
            f"Current rate: {stats.corners_per_min:.2f} corners per minute",
            f"Projection: {stats.corners_per_min * 10:.1f} corners in the next 10 minutes",
        ]
        if stats.possession_home > 60:
            lines.append(f"{home} dominating with {stats.possession_home}% possession")
        elif stats.possession_away > 60:
            lines.append(f"{away} dominating with {stats.possession_away}% possession")
        else:
            lines.append(f"Balanced possession: {stats.possession_home}% - {stats.possession_away}%")
        lines.append(f"Estimated (heuristic, not measured history): {_pct(prediction.probability)}% "
                     f"chance of a corner in the next 10 minutes")
        return lines
