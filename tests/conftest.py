# Shared factories and in-test fakes; no network, no sleeps.

from datetime import datetime, timezone

import pytest

from golazo.core.models import (
    BookmakerOdds, FixtureSnapshot, FixtureState, League, MarketId, MatchEvent, OddsOutcome,
    OddsQuote, Opportunity, OpportunityPrediction, Score, Team, TeamStats,
)


def build_book(name="Bet365", **markets):
    """markets: market_key -> [(outcome, price) or (outcome, price, point)]"""
    return BookmakerOdds(
        name=name,
        markets={key: tuple(OddsOutcome(*o) for o in outcomes) for key, outcomes in markets.items()},
    )


def build_snapshot(fixture_id="1001", minute=0, status="1H", home_goals=0, away_goals=0,
                   home_stats=None, away_stats=None, events=(), odds=(),
                   league=("Premier League", "England"), home=(1, "Liverpool"),
                   away=(2, "Chelsea"), kickoff=None):
    return FixtureSnapshot(
        fixture_id=str(fixture_id),
        league=League(id=39, name=league[0], country=league[1]),
        home=Team(id=home[0], name=home[1]),
        away=Team(id=away[0], name=away[1]),
        state=FixtureState(kickoff=kickoff, status=status, elapsed=minute),
        score=Score(home=home_goals, away=away_goals),
        home_stats=home_stats or TeamStats(),
        away_stats=away_stats or TeamStats(),
        events=tuple(events),
        odds=tuple(odds),
        retrieved_at=datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc),
    )


def build_opportunity(market=MarketId.BTTS, fixture_id="1001", probability=0.7, confidence=0.8,
                      expected_value=0.26, price=1.8, context=None):
    return Opportunity(
        market=market,
        fixture_id=str(fixture_id),
        home=Team(id=1, name="Liverpool"),
        away=Team(id=2, name="Chelsea"),
        minute=70,
        score=Score(1, 0),
        prediction=OpportunityPrediction(probability, confidence, expected_value),
        odds=OddsQuote(best_price=price, per_bookmaker=(("Bet365", price), ("Pinnacle", price - 0.05))),
        context=list(context) if context is not None else [
            "Liverpool 1 - 0 Chelsea (Min 70)",
            "Chelsea needs to score for the prediction to land",
            "Chelsea has 45% possession",
            "Chelsea has 4 shots on target",
            "Chelsea has won 5 corners",
            "20 minutes left for Chelsea to score",
        ],
    )


def event(minute, team_id, type_, detail=""):
    return MatchEvent(minute=minute, team_id=team_id, type=type_, detail=detail)


class FakeSource:
    def __init__(self, live=None, upcoming=None, details=None, fail=False):
        self.live = list(live or [])
        self.upcoming = list(upcoming or [])
        self.details = dict(details or {})
        self.fail = fail
        self.calls = []

    def get_live_fixtures(self):
        self.calls.append("live")
        if self.fail:
            raise RuntimeError("provider down")
        return list(self.live)

    def get_upcoming_fixtures(self, hours_ahead):
        self.calls.append(("upcoming", hours_ahead))
        if self.fail:
            raise RuntimeError("provider down")
        return list(self.upcoming)

    def get_fixture_detail(self, fixture_id):
        self.calls.append(("detail", fixture_id))
        if self.fail:
            raise RuntimeError("provider down")
        return self.details.get(str(fixture_id))


class RecordingNotifier:
    def __init__(self, failing_users=()):
        self.sent = []
        self.failing_users = set(failing_users)

    def _record(self, kind, user_id, text):
        if user_id in self.failing_users:
            return False
        self.sent.append((kind, user_id, text))
        return True

    def send_pre_alert(self, user_id, text):
        return self._record("pre", user_id, text)

    def send_main_alert(self, user_id, text):
        return self._record("main", user_id, text)

    def send_detailed_analysis(self, user_id, text):
        return self._record("analysis", user_id, text)

    def kinds(self):
        return [kind for kind, _, _ in self.sent]


class ManualScheduler:
    """Records jobs instead of running them; delayed jobs fire on run_pending()."""

    def __init__(self, next_run=None, fail_delayed=False):
        self.interval_jobs = {}
        self.delayed_jobs = {}
        self.started = False
        self.shut_down = False
        self.next_run = next_run
        self.fail_delayed = fail_delayed

    def start(self):
        self.started = True

    def shutdown(self):
        self.shut_down = True

    def add_interval_job(self, func, seconds, job_id):
        self.interval_jobs[job_id] = (func, seconds)

    def add_delayed_job(self, func, delay_sec, job_id, args=()):
        if self.fail_delayed:
            raise RuntimeError("scheduler unavailable")
        self.delayed_jobs[job_id] = (func, delay_sec, tuple(args))

    def cancel(self, job_id):
        found = self.interval_jobs.pop(job_id, None) or self.delayed_jobs.pop(job_id, None)
        return found is not None

    def next_run_time(self, job_id):
        return self.next_run if job_id in self.interval_jobs else None

    def run_pending(self):
        jobs, self.delayed_jobs = self.delayed_jobs, {}
        for func, _, args in jobs.values():
            func(*args)
        return len(jobs)


class Clock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def make_snapshot():
    return build_snapshot


@pytest.fixture
def make_book():
    return build_book


@pytest.fixture
def make_opportunity():
    return build_opportunity


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def clock():
    return Clock()
