from datetime import datetime, timezone

import pytest

from golazo.core.config import MonitoringConfig
from golazo.core.models import FixtureScore, MarketId, MonitoringEntry, Tier
from golazo.jobs.dispatch import AlertDispatcher
from golazo.jobs.monitor import CYCLE_JOB_ID, MonitoringOrchestrator, check_interval
from golazo.services.storage import InMemoryRepository
from golazo.services.subscribers import StaticSubscriberDirectory
from golazo.utils.errors import PersistenceError

from conftest import ManualScheduler, build_opportunity, build_snapshot


class StubSelector:
    def __init__(self, rounds):
        self.rounds = list(rounds)
        self.calls = 0
        self.on_select = None

    def select_scored(self, tier):
        self.calls += 1
        if self.on_select:
            self.on_select()
        picked = self.rounds.pop(0) if self.rounds else []
        return [(s, FixtureScore(relevance=p, potential=p, final=p)) for s, p in picked]


class StubDetector:
    def __init__(self, found=None):
        self.found = found or {}
        self.calls = []

    def detect_tiers(self, fixture_id, tiers):
        self.calls.append(fixture_id)
        return {t: o for t, o in self.found.get(fixture_id, {}).items() if t in tiers}

    def detect(self, fixture_id, tier):
        return self.found.get(fixture_id, {}).get(tier)


class BrokenRepository(InMemoryRepository):
    def initialize(self):
        raise PersistenceError("disk full")


@pytest.fixture
def repository():
    return InMemoryRepository()


def make_orchestrator(selector, detector, notifier, scheduler, clock, repository,
                      subscribers=None):
    subscribers = StaticSubscriberDirectory(subscribers or {
        Tier.FREE: ["f1"], Tier.INSIDER: ["i1"], Tier.ESTRATEGA: ["e1"],
    })
    dispatcher = AlertDispatcher(notifier, subscribers, scheduler, repository=repository)
    return MonitoringOrchestrator(selector, detector, dispatcher, repository, scheduler,
                                  config=MonitoringConfig(max_workers=2), clock=clock)


def test_check_interval_by_priority():
    assert [check_interval(p) for p in (9.5, 9, 8, 7, 6, 5, 4.9, 0)] == [30, 30, 60, 60, 120, 120, 300, 300]


def test_start_initializes_schedules_and_runs(notifier, scheduler, clock, repository):
    selector = StubSelector([[(build_snapshot("1", minute=20), 8.0)]])
    orchestrator = make_orchestrator(selector, StubDetector(), notifier, scheduler, clock, repository)
    orchestrator.start()

    assert scheduler.started
    assert scheduler.interval_jobs[CYCLE_JOB_ID][1] == 300
    assert selector.calls == 1
    assert set(orchestrator.entries) == {"1"}
    assert repository.is_monitored("1")


def test_storage_failure_is_fatal(notifier, scheduler, clock):
    orchestrator = make_orchestrator(StubSelector([]), StubDetector(), notifier, scheduler, clock,
                                     BrokenRepository())
    with pytest.raises(PersistenceError):
        orchestrator.start()
    assert scheduler.interval_jobs == {}
    assert not scheduler.started


def test_repeat_alert_respects_cooldown(notifier, scheduler, clock, repository):
    opp = build_opportunity(fixture_id="1")
    detector = StubDetector({"1": {Tier.ESTRATEGA: opp}})
    orchestrator = make_orchestrator(StubSelector([]), detector, notifier, scheduler, clock, repository)
    entry = MonitoringEntry(fixture=build_snapshot("1", minute=60), priority=9.5)

    assert orchestrator.check_entry(entry)
    assert notifier.kinds().count("main") == 1

    clock.advance(31)
    assert orchestrator.check_entry(entry)
    assert notifier.kinds().count("main") == 1

    clock.advance(900)
    orchestrator.check_entry(entry)
    assert notifier.kinds().count("main") == 2
    assert entry.sent_alerts[(MarketId.BTTS, Tier.ESTRATEGA)] == clock.now


def test_entry_not_due_is_skipped(notifier, scheduler, clock, repository):
    detector = StubDetector()
    orchestrator = make_orchestrator(StubSelector([]), detector, notifier, scheduler, clock, repository)
    entry = MonitoringEntry(fixture=build_snapshot("1"), priority=4.0)

    assert orchestrator.check_entry(entry)
    clock.advance(299)
    assert not orchestrator.check_entry(entry)
    assert detector.calls == ["1"]


def test_each_tier_is_dispatched_once_per_cycle(notifier, scheduler, clock, repository):
    found = {t: build_opportunity(fixture_id="1") for t in Tier}
    orchestrator = make_orchestrator(StubSelector([]), StubDetector({"1": found}), notifier, scheduler,
                                     clock, repository)
    orchestrator.check_entry(MonitoringEntry(fixture=build_snapshot("1"), priority=9.0))

    assert len([1 for kind, _, _ in notifier.sent if kind == "pre"]) == 3
    assert len(scheduler.delayed_jobs) == 2
    assert orchestrator.alerts_total == 3


def test_unselected_finished_fixture_is_dropped(notifier, scheduler, clock, repository):
    upcoming = build_snapshot("1", status="NS")
    selector = StubSelector([[(upcoming, 6.0)], []])
    detector = StubDetector({"1": {Tier.FREE: build_opportunity(fixture_id="1")}})
    orchestrator = make_orchestrator(selector, detector, notifier, scheduler, clock, repository)
    repository.upsert(upcoming)

    orchestrator.run_cycle()
    assert len(scheduler.delayed_jobs) == 1
    assert repository.is_monitored("1")

    orchestrator.run_cycle()
    assert orchestrator.entries == {}
    assert scheduler.delayed_jobs == {}
    assert not repository.is_monitored("1")


def test_live_fixture_stays_until_finished(notifier, scheduler, clock, repository):
    live = build_snapshot("1", minute=60, status="2H")
    selector = StubSelector([[(live, 8.0)], [], []])
    orchestrator = make_orchestrator(selector, StubDetector(), notifier, scheduler, clock, repository)
    repository.upsert(live)

    orchestrator.run_cycle()
    orchestrator.run_cycle()
    assert set(orchestrator.entries) == {"1"}

    repository.upsert(build_snapshot("1", minute=90, status="FT"))
    orchestrator.run_cycle()
    assert orchestrator.entries == {}


def test_overlapping_cycle_is_skipped(notifier, scheduler, clock, repository):
    selector = StubSelector([])
    orchestrator = make_orchestrator(selector, StubDetector(), notifier, scheduler, clock, repository)
    nested = []
    selector.on_select = lambda: nested.append(orchestrator.run_cycle())

    assert orchestrator.run_cycle() is True
    assert nested == [False]
    assert selector.calls == 1


def test_stats(notifier, clock, repository):
    next_run = datetime(2026, 10, 18, 12, 5, tzinfo=timezone.utc)
    scheduler = ManualScheduler(next_run=next_run)
    selector = StubSelector([[(build_snapshot("1", minute=10), 9.0)]])
    detector = StubDetector({"1": {Tier.ESTRATEGA: build_opportunity(fixture_id="1")}})
    orchestrator = make_orchestrator(selector, detector, notifier, scheduler, clock, repository)
    orchestrator.start()

    stats = orchestrator.get_stats()
    assert stats.is_running
    assert stats.watched_fixtures == 1
    assert stats.alerts_today == 1
    assert stats.alerts_total == 1
    assert stats.success_rate == 1.0
    assert stats.next_cycle_at == next_run
    assert stats.last_cycle_at == datetime.fromtimestamp(clock.now, tz=timezone.utc)


def test_stop_cancels_cycle_and_pending(notifier, scheduler, clock, repository):
    selector = StubSelector([[(build_snapshot("1", minute=10), 9.0)]])
    detector = StubDetector({"1": {Tier.FREE: build_opportunity(fixture_id="1")}})
    orchestrator = make_orchestrator(selector, detector, notifier, scheduler, clock, repository)
    orchestrator.start()
    assert len(scheduler.delayed_jobs) == 1

    orchestrator.stop()
    assert scheduler.interval_jobs == {}
    assert scheduler.delayed_jobs == {}
    assert not orchestrator.get_stats().is_running


def test_simulate_formats_without_sending(notifier, scheduler, clock, repository):
    detector = StubDetector({"1": {Tier.INSIDER: build_opportunity(fixture_id="1")}})
    orchestrator = make_orchestrator(StubSelector([]), detector, notifier, scheduler, clock, repository)

    opp, messages = orchestrator.simulate("1", Tier.INSIDER)
    assert opp.fixture_id == "1"
    assert "BOTH TEAMS TO SCORE" in messages.main_alert
    assert messages.detailed_analysis
    assert notifier.sent == []
    assert orchestrator.simulate("1", Tier.FREE) is None
