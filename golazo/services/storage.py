import json
import logging
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from golazo.core.models import (
    LIVE_STATUSES, FixtureSnapshot, MarketId, Tier,
    snapshot_from_dict, snapshot_to_dict,
)
from golazo.utils.errors import PersistenceError

log = logging.getLogger("golazo.storage")

SCHEMA = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA busy_timeout=5000;

CREATE TABLE IF NOT EXISTS fixtures (
  fixture_id TEXT PRIMARY KEY,
  status TEXT NOT NULL DEFAULT '',
  kickoff_ts REAL,
  monitored INTEGER NOT NULL DEFAULT 0,
  data TEXT NOT NULL,
  updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_fixtures_status ON fixtures(status);
CREATE INDEX IF NOT EXISTS idx_fixtures_kickoff ON fixtures(kickoff_ts);

CREATE TABLE IF NOT EXISTS alerts_sent (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  fixture_id TEXT NOT NULL,
  market TEXT NOT NULL,
  tier TEXT NOT NULL,
  sent_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_alerts_sent_at ON alerts_sent(sent_at);
CREATE INDEX IF NOT EXISTS idx_alerts_fixture ON alerts_sent(fixture_id);

CREATE TABLE IF NOT EXISTS team_strength (
  team_id INTEGER PRIMARY KEY,
  strength REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS head_to_head (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  home_team_id INTEGER NOT NULL,
  away_team_id INTEGER NOT NULL,
  home_goals INTEGER,
  away_goals INTEGER,
  played_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_h2h_teams ON head_to_head(home_team_id, away_team_id);
"""

UPCOMING_STATUSES = ("NS", "TBD")


def _kickoff_ts(snapshot: FixtureSnapshot) -> Optional[float]:
    kickoff = snapshot.state.kickoff
    if kickoff is None:
        return None
    if kickoff.tzinfo is None:
        kickoff = kickoff.replace(tzinfo=timezone.utc)
    return kickoff.timestamp()


class SQLiteRepository:
    """Fixture/alert store in a single SQLite file; one connection per call."""

    def __init__(self, path: str):
        self.path = path

    def _ensure_dir(self):
        d = os.path.dirname(self.path)
        if d and d not in (".", "/"):
            os.makedirs(d, exist_ok=True)

    @contextmanager
    def _conn(self):
        conn = sqlite3.connect(self.path, timeout=30, isolation_level=None)  # autocommit
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        finally:
            conn.close()

    def initialize(self):
        """Create tables; raises PersistenceError when the database is unusable."""
        try:
            self._ensure_dir()
            with self._conn() as conn:
                conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise PersistenceError(f"Cannot initialize database at {self.path}: {e}") from e
        log.info("[DB] SQLite ready at %s", self.path)

    # ---------- fixtures ----------

    def get_by_id(self, fixture_id: str) -> Optional[FixtureSnapshot]:
        with self._conn() as conn:
            row = conn.execute("SELECT data FROM fixtures WHERE fixture_id=?", (str(fixture_id),)).fetchone()
        return snapshot_from_dict(json.loads(row["data"])) if row else None

    def upsert(self, snapshot: FixtureSnapshot):
        payload = json.dumps(snapshot_to_dict(snapshot))
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO fixtures (fixture_id, status, kickoff_ts, data, updated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(fixture_id) DO UPDATE SET
                     status=excluded.status,
                     kickoff_ts=excluded.kickoff_ts,
                     data=excluded.data,
                     updated_at=excluded.updated_at""",
                (snapshot.fixture_id, snapshot.state.status, _kickoff_ts(snapshot), payload, time.time()),
            )

    def set_monitored(self, fixture_id: str, monitored: bool):
        with self._conn() as conn:
            conn.execute("UPDATE fixtures SET monitored=? WHERE fixture_id=?",
                         (1 if monitored else 0, str(fixture_id)))

    def is_monitored(self, fixture_id: str) -> bool:
        with self._conn() as conn:
            row = conn.execute("SELECT monitored FROM fixtures WHERE fixture_id=?", (str(fixture_id),)).fetchone()
        return bool(row and row["monitored"])

    def get_live_fixtures(self) -> List[FixtureSnapshot]:
        marks = ",".join("?" * len(LIVE_STATUSES))
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT data FROM fixtures WHERE status IN ({marks}) ORDER BY fixture_id",
                tuple(sorted(LIVE_STATUSES)),
            ).fetchall()
        return [snapshot_from_dict(json.loads(r["data"])) for r in rows]

    def get_upcoming_fixtures(self, hours_ahead: float) -> List[FixtureSnapshot]:
        now = time.time()
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT data FROM fixtures
                   WHERE status IN (?, ?) AND kickoff_ts BETWEEN ? AND ?
                   ORDER BY kickoff_ts""",
                (*UPCOMING_STATUSES, now, now + hours_ahead * 3600),
            ).fetchall()
        return [snapshot_from_dict(json.loads(r["data"])) for r in rows]

    # ---------- alerts ----------

    def record_alert_sent(self, fixture_id: str, market: MarketId, tier: Tier):
        with self._conn() as conn:
            conn.execute(
                "INSERT INTO alerts_sent (fixture_id, market, tier, sent_at) VALUES (?, ?, ?, ?)",
                (str(fixture_id), MarketId(market).value, Tier(tier).value, time.time()),
            )

    def count_alerts_since(self, since_ts: float) -> int:
        with self._conn() as conn:
            row = conn.execute("SELECT COUNT(*) AS n FROM alerts_sent WHERE sent_at >= ?", (since_ts,)).fetchone()
        return int(row["n"] or 0)

    # ---------- team context ----------

    def get_team_strength(self, team_id: int) -> Optional[float]:
        with self._conn() as conn:
            row = conn.execute("SELECT strength FROM team_strength WHERE team_id=?", (int(team_id),)).fetchone()
        return float(row["strength"]) if row else None

    def set_team_strength(self, team_id: int, strength: float):
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO team_strength (team_id, strength) VALUES (?, ?)
                   ON CONFLICT(team_id) DO UPDATE SET strength=excluded.strength""",
                (int(team_id), float(strength)),
            )

    def get_head_to_head(self, team_a: int, team_b: int) -> List[dict]:
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT home_team_id, away_team_id, home_goals, away_goals, played_at
                   FROM head_to_head
                   WHERE (home_team_id=? AND away_team_id=?) OR (home_team_id=? AND away_team_id=?)
                   ORDER BY played_at DESC""",
                (int(team_a), int(team_b), int(team_b), int(team_a)),
            ).fetchall()
        return [dict(r) for r in rows]

    def add_head_to_head(self, home_team_id: int, away_team_id: int,
                         home_goals: int, away_goals: int, played_at: Optional[str] = None):
        with self._conn() as conn:
            conn.execute(
                """INSERT INTO head_to_head (home_team_id, away_team_id, home_goals, away_goals, played_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (int(home_team_id), int(away_team_id), home_goals, away_goals,
                 played_at or datetime.now(timezone.utc).isoformat()),
            )


class InMemoryRepository:
    """Process-local store with the same contract; used for development and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self.fixtures: Dict[str, FixtureSnapshot] = {}
        self.monitored: Dict[str, bool] = {}
        self.alerts: List[Tuple[str, MarketId, Tier, float]] = []
        self.team_strength: Dict[int, float] = {}
        self.h2h: List[dict] = []

    def initialize(self):
        log.info("[DB] Using in-memory repository")

    def get_by_id(self, fixture_id: str) -> Optional[FixtureSnapshot]:
        with self._lock:
            return self.fixtures.get(str(fixture_id))

    def upsert(self, snapshot: FixtureSnapshot):
        with self._lock:
            self.fixtures[snapshot.fixture_id] = snapshot

    def set_monitored(self, fixture_id: str, monitored: bool):
        with self._lock:
            self.monitored[str(fixture_id)] = bool(monitored)

    def is_monitored(self, fixture_id: str) -> bool:
        with self._lock:
            return self.monitored.get(str(fixture_id), False)

    def get_live_fixtures(self) -> List[FixtureSnapshot]:
        with self._lock:
            return [s for _, s in sorted(self.fixtures.items()) if s.state.status in LIVE_STATUSES]

    def get_upcoming_fixtures(self, hours_ahead: float) -> List[FixtureSnapshot]:
        now = time.time()
        horizon = now + hours_ahead * 3600
        with self._lock:
            found = []
            for snapshot in self.fixtures.values():
                ts = _kickoff_ts(snapshot)
                if snapshot.state.status in UPCOMING_STATUSES and ts is not None and now <= ts <= horizon:
                    found.append((ts, snapshot))
        return [s for _, s in sorted(found, key=lambda pair: pair[0])]

    def record_alert_sent(self, fixture_id: str, market: MarketId, tier: Tier):
        with self._lock:
            self.alerts.append((str(fixture_id), MarketId(market), Tier(tier), time.time()))

    def count_alerts_since(self, since_ts: float) -> int:
        with self._lock:
            return sum(1 for *_, ts in self.alerts if ts >= since_ts)

    def get_team_strength(self, team_id: int) -> Optional[float]:
        with self._lock:
            return self.team_strength.get(team_id)

    def set_team_strength(self, team_id: int, strength: float):
        with self._lock:
            self.team_strength[team_id] = float(strength)

    def get_head_to_head(self, team_a: int, team_b: int) -> List[dict]:
        pair = {team_a, team_b}
        with self._lock:
            return [m for m in self.h2h if {m["home_team_id"], m["away_team_id"]} == pair]

    def add_head_to_head(self, home_team_id: int, away_team_id: int,
                         home_goals: int, away_goals: int, played_at: Optional[str] = None):
        with self._lock:
            self.h2h.append({
                "home_team_id": home_team_id,
                "away_team_id": away_team_id,
                "home_goals": home_goals,
                "away_goals": away_goals,
                "played_at": played_at,
            })
