import logging
import re
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from cachetools import TTLCache
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from golazo.core.config import APIConfig
from golazo.core.models import (
    BookmakerOdds, FixtureSnapshot, FixtureState, League, MatchEvent, OddsOutcome,
    Score, Team, TeamStats,
)

log = logging.getLogger("golazo.api")

LIVE_TTL_SEC = 30
UPCOMING_TTL_SEC = 300
DETAIL_TTL_SEC = 60

STAT_POSSESSION = "Ball Possession"
STAT_SHOTS_ON_TARGET = ("Shots on Goal", "Shots on Target")
STAT_CORNERS = "Corner Kicks"
STAT_YELLOW = "Yellow Cards"


def _int_or_none(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(str(value).replace("%", "").strip()))
    except (TypeError, ValueError):
        return None


def _float_or_none(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(str(value).replace("%", "").strip())
    except (TypeError, ValueError):
        return None


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


# ---------- payload normalisation ----------

def _team_stats(block: Dict[str, Any]) -> TeamStats:
    values = {item.get("type"): item.get("value") for item in block.get("statistics") or []}
    sot = None
    for key in STAT_SHOTS_ON_TARGET:
        if values.get(key) is not None:
            sot = _int_or_none(values.get(key))
            break
    return TeamStats(
        possession=_float_or_none(values.get(STAT_POSSESSION)),
        shots_on_target=sot,
        corners=_int_or_none(values.get(STAT_CORNERS)),
        yellow_cards=_int_or_none(values.get(STAT_YELLOW)),
    )


def _split_statistics(statistics: List[Dict[str, Any]], home: Team, away: Team) -> Tuple[TeamStats, TeamStats]:
    home_stats, away_stats = TeamStats(), TeamStats()
    for idx, block in enumerate(statistics or []):
        team_id = (block.get("team") or {}).get("id")
        if team_id is not None and team_id == home.id:
            home_stats = _team_stats(block)
        elif team_id is not None and team_id == away.id:
            away_stats = _team_stats(block)
        elif idx == 0:
            home_stats = _team_stats(block)
        elif idx == 1:
            away_stats = _team_stats(block)
    return home_stats, away_stats


def _events(raw_events: List[Dict[str, Any]]) -> Tuple[MatchEvent, ...]:
    out = []
    for ev in raw_events or []:
        t = ev.get("time") or {}
        team = ev.get("team") or {}
        out.append(MatchEvent(
            minute=int(t.get("elapsed") or 0) + int(t.get("extra") or 0),
            team_id=team.get("id"),
            team_name=team.get("name") or "",
            type=ev.get("type") or "",
            detail=ev.get("detail") or "",
        ))
    return tuple(sorted(out, key=lambda e: e.minute))


def _canonical_bet(name: str) -> Optional[str]:
    n = (name or "").strip().lower()
    if n in ("match winner", "fulltime result", "1x2"):
        return "h2h"
    if "corner" in n and "10" in n:
        return "corner_next_10min"
    if "next goal" in n or "score the next goal" in n:
        return "next_goal"
    if n in ("both teams score", "both teams to score", "both teams to score (btts)"):
        return "btts"
    if n in ("goals over/under", "over/under line", "over/under", "total goals"):
        return "goals_over_under"
    return None


_OUTCOME_ALIASES = {"1": "Home", "x": "Draw", "2": "Away", "home": "Home", "draw": "Draw",
                    "away": "Away", "yes": "Yes", "no": "No", "over": "Over", "under": "Under"}

_OU_VALUE = re.compile(r"^(over|under)\s*([0-9]+(?:\.[0-9]+)?)$", re.IGNORECASE)


def _outcome(value: Dict[str, Any]) -> Optional[OddsOutcome]:
    price = _float_or_none(value.get("odd"))
    if not price or price <= 1.0:
        return None
    label = str(value.get("value") or "").strip()
    point = _float_or_none(value.get("handicap"))

    m = _OU_VALUE.match(label)
    if m:
        return OddsOutcome(name=m.group(1).capitalize(), price=price, point=float(m.group(2)))

    name = _OUTCOME_ALIASES.get(label.lower(), label)
    return OddsOutcome(name=name, price=price, point=point)


def _bookmaker(name: str, bets: List[Dict[str, Any]]) -> Optional[BookmakerOdds]:
    markets: Dict[str, List[OddsOutcome]] = {}
    for bet in bets or []:
        key = _canonical_bet(bet.get("name"))
        if key is None:
            continue
        for value in bet.get("values") or []:
            if value.get("suspended"):
                continue
            outcome = _outcome(value)
            if outcome is not None:
                markets.setdefault(key, []).append(outcome)
    if not markets:
        return None
    return BookmakerOdds(name=name, markets={k: tuple(v) for k, v in markets.items()})


def _odds(raw_odds: List[Dict[str, Any]]) -> Tuple[BookmakerOdds, ...]:
    """Pre-match (``bookmakers``) and live (``odds``) payload shapes."""
    books = []
    for entry in raw_odds or []:
        for bm in entry.get("bookmakers") or []:
            book = _bookmaker(bm.get("name") or f"bookmaker-{bm.get('id')}", bm.get("bets"))
            if book:
                books.append(book)
        if entry.get("odds"):
            book = _bookmaker("Live", entry.get("odds"))
            if book:
                books.append(book)
    return tuple(books)


def normalize_fixture(raw: Dict[str, Any], statistics: Optional[List[Dict[str, Any]]] = None,
                      events: Optional[List[Dict[str, Any]]] = None,
                      odds: Optional[List[Dict[str, Any]]] = None) -> Optional[FixtureSnapshot]:
    """API-Football fixture payload (plus optional sub-resources) to a snapshot."""
    fixture = raw.get("fixture") or {}
    fid = fixture.get("id")
    if fid is None:
        return None
    status = fixture.get("status") or {}
    league = raw.get("league") or {}
    teams = raw.get("teams") or {}
    goals = raw.get("goals") or {}

    home = Team(id=(teams.get("home") or {}).get("id"), name=(teams.get("home") or {}).get("name") or "")
    away = Team(id=(teams.get("away") or {}).get("id"), name=(teams.get("away") or {}).get("name") or "")
    home_stats, away_stats = _split_statistics(statistics if statistics is not None else raw.get("statistics"),
                                               home, away)

    return FixtureSnapshot(
        fixture_id=str(fid),
        league=League(id=league.get("id"), name=league.get("name") or "", country=league.get("country") or ""),
        home=home,
        away=away,
        state=FixtureState(
            kickoff=_parse_dt(fixture.get("date")),
            status=(status.get("short") or "").upper(),
            elapsed=int(status.get("elapsed") or 0),
        ),
        score=Score(home=int(goals.get("home") or 0), away=int(goals.get("away") or 0)),
        home_stats=home_stats,
        away_stats=away_stats,
        events=_events(events if events is not None else raw.get("events")),
        odds=_odds(odds),
        retrieved_at=datetime.now(timezone.utc),
    )


# ---------- client ----------

class ApiUsage:
    """Daily request counter owned by one client instance."""

    def __init__(self):
        self.day = datetime.now(timezone.utc).date()
        self.requests = 0
        self.failures = 0
        self._lock = threading.Lock()

    def record(self, ok: bool):
        with self._lock:
            today = datetime.now(timezone.utc).date()
            if today != self.day:
                self.day, self.requests, self.failures = today, 0, 0
            self.requests += 1
            if not ok:
                self.failures += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {"day": self.day.isoformat(), "requests": self.requests, "failures": self.failures}


class ApiFootballSource:
    """Fixture data source backed by API-Football v3."""

    def __init__(self, config: APIConfig, session: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config
        self.clock = clock
        self.usage = ApiUsage()
        self.session = session or requests.Session()
        self.circuit_breaker = {"failures": 0, "opened_until": 0.0, "last_success": 0.0}
        self._cb_lock = threading.Lock()

        retry_strategy = Retry(
            total=config.retries,
            backoff_factor=0.3,
            status_forcelist=[429, 500, 502, 503, 504],
            respect_retry_after_header=True,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("https://", adapter)

        self.headers = {"x-apisports-key": config.key or "", "Accept": "application/json"}

        self._cache_lock = threading.Lock()
        self._live_cache = TTLCache(maxsize=1, ttl=LIVE_TTL_SEC, timer=clock)
        self._upcoming_cache = TTLCache(maxsize=8, ttl=UPCOMING_TTL_SEC, timer=clock)
        self._detail_cache = TTLCache(maxsize=config.detail_cache_size, ttl=DETAIL_TTL_SEC, timer=clock)

    def _cached(self, cache: TTLCache, key):
        with self._cache_lock:
            return cache.get(key)

    def _store(self, cache: TTLCache, key, value):
        with self._cache_lock:
            cache[key] = value

    # ---------- transport ----------

    def _check_circuit_breaker(self) -> bool:
        now = self.clock()
        with self._cb_lock:
            cb = self.circuit_breaker
            if cb["opened_until"] > now:
                log.warning("[CB] Circuit open, rejecting request")
                return False
            if cb["failures"] > 0 and cb["opened_until"] and now >= cb["opened_until"]:
                log.info("[CB] Resetting circuit breaker after cooldown")
                cb["failures"] = 0
                cb["opened_until"] = 0.0
        return True

    def _record(self, ok: bool):
        now = self.clock()
        self.usage.record(ok)
        with self._cb_lock:
            cb = self.circuit_breaker
            if ok:
                cb["failures"] = 0
                cb["last_success"] = now
                return
            cb["failures"] += 1
            if cb["failures"] >= self.config.circuit_breaker_threshold:
                cb["opened_until"] = now + self.config.circuit_breaker_cooldown
                log.warning("[CB] API-Football opened for %ss", self.config.circuit_breaker_cooldown)

    def _deadline(self) -> float:
        return self.clock() + self.config.call_budget

    def get(self, endpoint: str, params: Dict[str, Any],
            deadline: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """GET one endpoint; ``None`` on any failure or once ``deadline`` has passed."""
        if not self.config.key:
            log.debug("[API] No API key configured; skipping %s", endpoint)
            return None
        if not self._check_circuit_breaker():
            return None

        timeout = self.config.timeout
        if deadline is not None:
            remaining = deadline - self.clock()
            if remaining <= 0:
                log.warning("[API] Call budget spent, skipping %s", endpoint)
                return None
            # Retried attempts each get the full per-request timeout
            timeout = min(timeout, remaining / (self.config.retries + 1))

        url = f"{self.config.base_url.rstrip('/')}/{endpoint}"
        try:
            response = self.session.get(url, headers=self.headers, params=params, timeout=timeout)
        except requests.RequestException as e:
            log.warning("[API] %s failed: %s", endpoint, e)
            self._record(False)
            return None

        ok = response.status_code < 500 and response.status_code != 429
        self._record(ok)
        if not response.ok:
            log.warning("[API] %s returned %s", endpoint, response.status_code)
            return None
        try:
            data = response.json()
        except ValueError:
            log.warning("[API] %s returned invalid JSON", endpoint)
            return None
        if isinstance(data, dict) and data.get("errors"):
            log.warning("[API] %s errors: %s", endpoint, data.get("errors"))
        return data if isinstance(data, dict) else None

    def _response(self, endpoint: str, params: Dict[str, Any],
                  deadline: Optional[float] = None) -> List[Dict[str, Any]]:
        data = self.get(endpoint, params, deadline)
        return list(data.get("response") or []) if data else []

    # ---------- data source contract ----------

    def get_live_fixtures(self) -> List[FixtureSnapshot]:
        """All in-play fixtures, cached for a few seconds."""
        cached = self._cached(self._live_cache, "live")
        if cached is not None:
            return cached
        raw = self._response("fixtures", {"live": "all"}, self._deadline())
        snapshots = [s for s in (normalize_fixture(m) for m in raw) if s is not None]
        if raw:
            self._store(self._live_cache, "live", snapshots)
        log.info("[API] live fixtures: %d", len(snapshots))
        return snapshots

    def get_upcoming_fixtures(self, hours_ahead: float) -> List[FixtureSnapshot]:
        """Not-started fixtures kicking off within ``hours_ahead``, earliest first."""
        key = ("upcoming", float(hours_ahead))
        cached = self._cached(self._upcoming_cache, key)
        if cached is not None:
            return cached

        deadline = self._deadline()
        now = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        horizon = now + timedelta(hours=hours_ahead)
        days = sorted({now.date(), horizon.date()})

        snapshots = []
        for day in days:
            params = {"date": day.isoformat(), "status": "NS", "timezone": "UTC"}
            for m in self._response("fixtures", params, deadline):
                s = normalize_fixture(m)
                if s is None or s.state.kickoff is None:
                    continue
                if now <= s.state.kickoff <= horizon:
                    snapshots.append(s)
        snapshots.sort(key=lambda s: (s.state.kickoff, s.fixture_id))
        if snapshots:
            self._store(self._upcoming_cache, key, snapshots)
        log.info("[API] upcoming fixtures (%.1fh): %d", hours_ahead, len(snapshots))
        return snapshots

    def get_fixture_detail(self, fixture_id: str) -> Optional[FixtureSnapshot]:
        """Fixture with statistics, events and odds; later requests are skipped once the budget runs out."""
        cached = self._cached(self._detail_cache, str(fixture_id))
        if cached is not None:
            return cached

        deadline = self._deadline()
        raw = self._response("fixtures", {"id": fixture_id}, deadline)
        if not raw:
            return None
        base = raw[0]
        status = ((base.get("fixture") or {}).get("status") or {}).get("short") or ""
        live = status.upper() in ("1H", "HT", "2H", "ET", "BT", "P")

        params = {"fixture": fixture_id}
        statistics = base.get("statistics") or self._response("fixtures/statistics", params, deadline)
        events = base.get("events") or self._response("fixtures/events", params, deadline)
        odds = self._response("odds/live" if live else "odds", params, deadline)

        snapshot = normalize_fixture(base, statistics=statistics, events=events, odds=odds)
        if snapshot is not None:
            self._store(self._detail_cache, str(fixture_id), snapshot)
        return snapshot
