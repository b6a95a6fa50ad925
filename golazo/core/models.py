import threading
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple, Any

LIVE_STATUSES = frozenset({"1H", "2H", "HT"})


class MarketId(str, Enum):
    """Closed set of supported short-horizon markets."""

    NEXT_GOAL = "nextGoal"
    OVER_05 = "over05"
    OVER_15 = "over15"
    OVER_25 = "over25"
    BTTS = "btts"
    CORNER_NEXT_10 = "cornerNext10Min"


class Tier(str, Enum):
    FREE = "free"
    INSIDER = "insider"
    ESTRATEGA = "estratega"


# Most exclusive (most permissive threshold, no delay) first
TIERS_BY_EXCLUSIVITY: Tuple[Tier, ...] = (Tier.ESTRATEGA, Tier.INSIDER, Tier.FREE)


@dataclass(frozen=True)
class League:
    id: Optional[int] = None
    name: str = ""
    country: str = ""


@dataclass(frozen=True)
class Team:
    id: Optional[int] = None
    name: str = ""


@dataclass(frozen=True)
class FixtureState:
    kickoff: Optional[datetime] = None
    status: str = ""
    elapsed: int = 0

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES


@dataclass(frozen=True)
class Score:
    home: int = 0
    away: int = 0

    @property
    def total(self) -> int:
        return self.home + self.away


@dataclass(frozen=True)
class TeamStats:
    """Per-team live statistics; ``None`` means the provider did not report it."""

    possession: Optional[float] = None
    shots_on_target: Optional[int] = None
    corners: Optional[int] = None
    yellow_cards: Optional[int] = None


@dataclass(frozen=True)
class MatchEvent:
    minute: int
    team_id: Optional[int] = None
    team_name: str = ""
    type: str = ""
    detail: str = ""


@dataclass(frozen=True)
class OddsOutcome:
    name: str
    price: float
    point: Optional[float] = None


@dataclass(frozen=True)
class BookmakerOdds:
    name: str
    markets: Dict[str, Tuple[OddsOutcome, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class FixtureSnapshot:
    """Normalized, read-only view of a fixture at retrieval time."""

    fixture_id: str
    league: League = field(default_factory=League)
    home: Team = field(default_factory=Team)
    away: Team = field(default_factory=Team)
    state: FixtureState = field(default_factory=FixtureState)
    score: Score = field(default_factory=Score)
    home_stats: TeamStats = field(default_factory=TeamStats)
    away_stats: TeamStats = field(default_factory=TeamStats)
    events: Tuple[MatchEvent, ...] = ()
    odds: Tuple[BookmakerOdds, ...] = ()
    retrieved_at: Optional[datetime] = None

    @property
    def minute(self) -> int:
        return self.state.elapsed

    @property
    def is_live(self) -> bool:
        return self.state.is_live

    @property
    def has_statistics(self) -> bool:
        return self.home_stats != TeamStats() or self.away_stats != TeamStats()

    def label(self) -> str:
        return f"{self.home.name or 'Home'} vs {self.away.name or 'Away'}"


@dataclass(frozen=True)
class MarketPrediction:
    probability: float
    confidence: float
    resolved: bool = False


@dataclass(frozen=True)
class PotentialScore:
    score: float
    source: str = "rules"


@dataclass(frozen=True)
class OddsQuote:
    best_price: float
    per_bookmaker: Tuple[Tuple[str, float], ...] = ()


@dataclass(frozen=True)
class OpportunityPrediction:
    probability: float
    confidence: float
    expected_value: float


@dataclass
class Opportunity:
    market: MarketId
    fixture_id: str
    home: Team
    away: Team
    minute: int
    score: Score
    prediction: OpportunityPrediction
    odds: OddsQuote
    context: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class FixtureScore:
    relevance: float
    potential: float
    final: float


@dataclass
class MonitoringEntry:
    fixture: FixtureSnapshot
    priority: float
    last_check: Optional[float] = None
    sent_alerts: Dict[Tuple[MarketId, Tier], float] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


# ---------- serialization ----------

def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt_from_str(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def snapshot_to_dict(snapshot: FixtureSnapshot) -> Dict[str, Any]:
    data = asdict(snapshot)
    data["state"]["kickoff"] = _dt_to_str(snapshot.state.kickoff)
    data["retrieved_at"] = _dt_to_str(snapshot.retrieved_at)
    return data


def snapshot_from_dict(data: Dict[str, Any]) -> FixtureSnapshot:
    state = data.get("state") or {}
    odds = []
    for book in data.get("odds") or []:
        markets = {
            key: tuple(OddsOutcome(**o) for o in outcomes or [])
            for key, outcomes in (book.get("markets") or {}).items()
        }
        odds.append(BookmakerOdds(name=book.get("name", ""), markets=markets))
    return FixtureSnapshot(
        fixture_id=str(data["fixture_id"]),
        league=League(**(data.get("league") or {})),
        home=Team(**(data.get("home") or {})),
        away=Team(**(data.get("away") or {})),
        state=FixtureState(
            kickoff=_dt_from_str(state.get("kickoff")),
            status=state.get("status") or "",
            elapsed=int(state.get("elapsed") or 0),
        ),
        score=Score(**(data.get("score") or {})),
        home_stats=TeamStats(**(data.get("home_stats") or {})),
        away_stats=TeamStats(**(data.get("away_stats") or {})),
        events=tuple(MatchEvent(**e) for e in data.get("events") or []),
        odds=tuple(odds),
        retrieved_at=_dt_from_str(data.get("retrieved_at")),
    )
