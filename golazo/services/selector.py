import logging
from typing import Dict, List, Optional, Tuple

from golazo.core.config import SelectionConfig, TierSettings, default_tiers
from golazo.core.models import FixtureScore, FixtureSnapshot, Tier
from golazo.core.predictors import PredictionFusionEngine
from golazo.services.interfaces import FixtureDataSource, FixtureRepository
from golazo.utils.concurrency import call_with_timeout

log = logging.getLogger("golazo.selector")

LIVE_BONUS = 2.0
LATE_SECOND_HALF_BONUS = 1.0
LEAGUE_SHARE = 0.5
TEAMS_SHARE = 0.4


def _clamp10(value: float) -> float:
    return max(0.0, min(10.0, value))


def _lookup(name: str, table: Dict[str, float]) -> float:
    """Exact match, else best substring match in either direction, else 0."""
    if not name:
        return 0.0
    if name in table:
        return float(table[name])
    best = 0.0
    for key, value in table.items():
        if key and (key in name or name in key):
            best = max(best, float(value))
    return best


class FixturePrioritySelector:
    """Ranks candidate fixtures by relevance and potential under a tier quota."""

    def __init__(self, source: FixtureDataSource, repository: FixtureRepository,
                 engine: PredictionFusionEngine,
                 config: Optional[SelectionConfig] = None,
                 tiers: Optional[Dict[Tier, TierSettings]] = None,
                 upstream_timeout: float = 10.0):
        self.source = source
        self.repository = repository
        self.engine = engine
        self.config = config or SelectionConfig()
        self.tiers = tiers or default_tiers()
        self.upstream_timeout = upstream_timeout

    def select_for_monitoring(self, tier: Tier) -> List[FixtureSnapshot]:
        """Fixtures worth watching for ``tier``, best first, capped at its quota."""
        return [snapshot for snapshot, _ in self.select_scored(tier)]

    def select_scored(self, tier: Tier) -> List[Tuple[FixtureSnapshot, FixtureScore]]:
        """Quota-truncated selection with each fixture's score, best first."""
        try:
            candidates = self._gather()
        except Exception as e:
            log.exception("[SELECT] Failed to gather fixtures: %s", e)
            return []

        scored = []
        for snapshot in candidates:
            score = self.score(snapshot)
            scored.append((score, snapshot))

        scored.sort(key=lambda pair: (-pair[0].final, pair[1].fixture_id))
        quota = max(0, self.tiers[tier].quota)
        selected = [(snapshot, score) for score, snapshot in scored[:quota]]

        log.info("[SELECT] tier=%s candidates=%d selected=%d",
                 tier.value, len(candidates), len(selected))
        for score, snapshot in scored[:quota]:
            log.debug("[SELECT] %s %s relevance=%.2f potential=%.2f final=%.2f",
                      snapshot.fixture_id, snapshot.label(),
                      score.relevance, score.potential, score.final)
        return selected

    def _fetch(self, fn, *args) -> List[FixtureSnapshot]:
        try:
            return list(call_with_timeout(fn, self.upstream_timeout, *args) or [])
        except Exception as e:
            log.warning("[SELECT] %s failed: %s", getattr(fn, "__name__", fn), e)
            return []

    def _gather(self) -> List[FixtureSnapshot]:
        """Live plus soon-to-start fixtures, deduplicated by id."""
        hours = self.config.lookahead_hours
        live = self._fetch(self.source.get_live_fixtures)
        upcoming = self._fetch(self.source.get_upcoming_fixtures, hours)

        fresh = bool(live or upcoming)
        if not fresh:
            log.warning("[SELECT] Data source returned nothing; using stored fixtures")
            live = self._fetch(self.repository.get_live_fixtures)
            upcoming = self._fetch(self.repository.get_upcoming_fixtures, hours)

        merged: Dict[str, FixtureSnapshot] = {}
        for snapshot in live + upcoming:
            if snapshot and snapshot.fixture_id not in merged:
                merged[snapshot.fixture_id] = snapshot

        if fresh:
            for snapshot in merged.values():
                try:
                    self.repository.upsert(snapshot)
                except Exception as e:
                    log.warning("[SELECT] Could not store %s: %s", snapshot.fixture_id, e)
        return list(merged.values())

    def score(self, snapshot: FixtureSnapshot) -> FixtureScore:
        """Weighted blend of relevance and potential."""
        relevance = self.relevance(snapshot)
        potential = self.potential(snapshot)
        final = relevance * self.config.relevance_weight + potential * self.config.potential_weight
        return FixtureScore(relevance=relevance, potential=potential, final=final)

    def relevance(self, snapshot: FixtureSnapshot) -> float:
        """League and team popularity on a 0-10 scale."""
        try:
            league = snapshot.league
            key = f"{league.name} - {league.country}" if league.country else league.name
            league_score = _lookup(key, self.config.league_popularity)
            if self.config.home_country and league.country == self.config.home_country:
                league_score = max(league_score, self.config.home_country_floor)

            home = _lookup(snapshot.home.name, self.config.team_popularity)
            away = _lookup(snapshot.away.name, self.config.team_popularity)
            teams_score = max(home, away) * 0.7 + min(home, away) * 0.3

            score = league_score * LEAGUE_SHARE + teams_score * TEAMS_SHARE
            if snapshot.is_live:
                score += LIVE_BONUS
                if snapshot.state.status == "2H" and snapshot.minute > 75:
                    score += LATE_SECOND_HALF_BONUS
            return _clamp10(score)
        except Exception as e:
            log.warning("[SELECT] Relevance failed for %s: %s", snapshot.fixture_id, e)
            return 5.0

    def potential(self, snapshot: FixtureSnapshot) -> float:
        """Expected action on a 0-10 scale."""
        try:
            result = self.engine.predict_potential(snapshot)
            if result.source == "model":
                return _clamp10(result.score * 10)
        except Exception as e:
            log.warning("[SELECT] Potential model failed for %s: %s", snapshot.fixture_id, e)
        return self._potential_with_rules(snapshot)

    def _potential_with_rules(self, snapshot: FixtureSnapshot) -> float:
        try:
            score = self.engine.rules.predict_potential(snapshot) * 10

            diff = abs(self._team_strength(snapshot.home.id) - self._team_strength(snapshot.away.id))
            if diff < 0.1:
                score += 2
            elif diff < 0.2:
                score += 1
            elif diff > 0.4:
                score -= 1

            score += self._volatility(snapshot) * 3
            return _clamp10(score)
        except Exception as e:
            log.warning("[SELECT] Rule potential failed for %s: %s", snapshot.fixture_id, e)
            return 5.0

    def _team_strength(self, team_id: Optional[int]) -> float:
        if team_id is None:
            return 0.5
        try:
            strength = self.repository.get_team_strength(team_id)
        except Exception as e:
            log.warning("[SELECT] Team strength lookup failed for %s: %s", team_id, e)
            return 0.5
        return 0.5 if strength is None else max(0.0, min(1.0, float(strength)))

    def _volatility(self, snapshot: FixtureSnapshot) -> float:
        """Head-to-head volatility in [0, 1]; 0.5 when unknown."""
        if snapshot.home.id is None or snapshot.away.id is None:
            return 0.5
        try:
            h2h = self.repository.get_head_to_head(snapshot.home.id, snapshot.away.id)
        except Exception as e:
            log.warning("[SELECT] Head-to-head lookup failed for %s: %s", snapshot.fixture_id, e)
            return 0.5
        if not h2h:
            return 0.5
        return min(1.0, len(h2h) / 10.0)
