import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from golazo.core.config import MonitoringConfig
from golazo.core.models import (
    TIERS_BY_EXCLUSIVITY, FixtureScore, FixtureSnapshot, MonitoringEntry, Opportunity, Tier,
)
from golazo.jobs.dispatch import AlertDispatcher
from golazo.services.detector import OpportunityDetector
from golazo.services.formatter import AlertMessages
from golazo.services.interfaces import FixtureRepository
from golazo.services.selector import FixturePrioritySelector

log = logging.getLogger("golazo.monitor")

CYCLE_JOB_ID = "monitoring-cycle"


def check_interval(priority: float) -> int:
    """Seconds between checks; higher priority fixtures are polled more often."""
    if priority >= 9:
        return 30
    if priority >= 7:
        return 60
    if priority >= 5:
        return 120
    return 300


@dataclass(frozen=True)
class MonitoringStats:
    is_running: bool
    watched_fixtures: int
    alerts_today: int
    alerts_total: int
    success_rate: float
    last_cycle_at: Optional[datetime]
    next_cycle_at: Optional[datetime]


class MonitoringOrchestrator:
    """Owns the watched-fixture set and drives periodic detection cycles.

    Cycles never overlap: a cycle started while another is running returns
    immediately. Each entry's check/dedup state is guarded by its own lock.
    """

    def __init__(self, selector: FixturePrioritySelector, detector: OpportunityDetector,
                 dispatcher: AlertDispatcher, repository: FixtureRepository, scheduler,
                 config: Optional[MonitoringConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.selector = selector
        self.detector = detector
        self.dispatcher = dispatcher
        self.repository = repository
        self.scheduler = scheduler
        self.config = config or MonitoringConfig()
        self.clock = clock

        self.entries: Dict[str, MonitoringEntry] = {}
        self._entries_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self.running = False
        self.alerts_total = 0
        self.last_cycle_at: Optional[float] = None

    # ---------- lifecycle ----------

    def start(self):
        """Initialise storage, run one cycle and schedule the rest.

        A ``PersistenceError`` from ``repository.initialize()`` propagates.
        """
        if self.running:
            log.info("[MONITOR] Already running")
            return
        self.repository.initialize()
        self.running = True
        self.scheduler.add_interval_job(self.run_cycle, self.config.cycle_interval_sec, CYCLE_JOB_ID)
        self.scheduler.start()
        log.info("[MONITOR] Started, cycle every %ss", self.config.cycle_interval_sec)
        self.run_cycle()

    def stop(self):
        """Stop cycling and drop all pending delayed alerts."""
        if not self.running:
            return
        self.running = False
        self.scheduler.cancel(CYCLE_JOB_ID)
        cancelled = self.dispatcher.cancel_all()
        log.info("[MONITOR] Stopped (%d pending alert(s) cancelled)", cancelled)

    # ---------- cycle ----------

    def run_cycle(self) -> bool:
        """One monitoring pass; False when skipped because a cycle is in progress."""
        if not self._cycle_lock.acquire(blocking=False):
            log.warning("[CYCLE] Previous cycle still running, skipping")
            return False
        started = self.clock()
        try:
            self._refresh_watch_set()
            entries = self._snapshot_entries()
            checked = self._check_entries(entries)
            log.info("[CYCLE] Done: watched=%d checked=%d in %.2fs",
                     len(entries), checked, self.clock() - started)
        except Exception as e:
            log.exception("[CYCLE] Cycle failed: %s", e)
        finally:
            self.last_cycle_at = self.clock()
            self._cycle_lock.release()
        return True

    def _snapshot_entries(self) -> List[MonitoringEntry]:
        with self._entries_lock:
            return list(self.entries.values())

    def _refresh_watch_set(self):
        selection: List[Tuple[FixtureSnapshot, FixtureScore]] = self.selector.select_scored(Tier.ESTRATEGA)
        selected_ids = set()
        added = []

        with self._entries_lock:
            for snapshot, score in selection:
                selected_ids.add(snapshot.fixture_id)
                entry = self.entries.get(snapshot.fixture_id)
                if entry is None:
                    self.entries[snapshot.fixture_id] = MonitoringEntry(fixture=snapshot, priority=score.final)
                    added.append(snapshot.fixture_id)
                else:
                    entry.fixture = snapshot
                    entry.priority = score.final
            unselected = [e for fid, e in self.entries.items() if fid not in selected_ids]

        dropped = [e.fixture.fixture_id for e in unselected if not self._still_live(e)]

        with self._entries_lock:
            for fixture_id in dropped:
                self.entries.pop(fixture_id, None)

        for fixture_id in added:
            self._mark_monitored(fixture_id, True)
        for fixture_id in dropped:
            self.dispatcher.cancel_pending(fixture_id)
            self._mark_monitored(fixture_id, False)

        if added or dropped:
            log.info("[MONITOR] Watch set: +%d -%d = %d", len(added), len(dropped), len(self.entries))

    def _still_live(self, entry: MonitoringEntry) -> bool:
        """Re-read the stored copy so finished fixtures leave the watch set."""
        if not entry.fixture.is_live:
            return False
        try:
            stored = self.repository.get_by_id(entry.fixture.fixture_id)
        except Exception as e:
            log.warning("[MONITOR] Could not re-check %s: %s", entry.fixture.fixture_id, e)
            return True
        if stored is not None:
            with entry.lock:
                entry.fixture = stored
        return entry.fixture.is_live

    def _mark_monitored(self, fixture_id: str, monitored: bool):
        try:
            self.repository.set_monitored(fixture_id, monitored)
        except Exception as e:
            log.warning("[MONITOR] set_monitored(%s, %s) failed: %s", fixture_id, monitored, e)

    def _check_entries(self, entries: List[MonitoringEntry]) -> int:
        if not entries:
            return 0
        checked = 0
        workers = max(1, min(self.config.max_workers, len(entries)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="golazo-monitor") as pool:
            futures = {pool.submit(self.check_entry, e): e for e in entries}
            for future in as_completed(futures):
                entry = futures[future]
                try:
                    if future.result():
                        checked += 1
                except Exception as e:
                    log.exception("[MONITOR] Check failed for %s: %s", entry.fixture.fixture_id, e)
        return checked

    def check_entry(self, entry: MonitoringEntry) -> bool:
        """Detect and dispatch for one entry if it is due; True if it was checked."""
        with entry.lock:
            now = self.clock()
            interval = check_interval(entry.priority)
            if entry.last_check is not None and now - entry.last_check < interval:
                return False
            entry.last_check = now

            fixture_id = entry.fixture.fixture_id
            found = self.detector.detect_tiers(fixture_id, TIERS_BY_EXCLUSIVITY)
            for tier in TIERS_BY_EXCLUSIVITY:
                opp = found.get(tier)
                if opp is None:
                    continue
                key = (opp.market, tier)
                last_sent = entry.sent_alerts.get(key)
                now = self.clock()
                if last_sent is not None and now - last_sent < self.config.cooldown_sec:
                    log.debug("[MONITOR] %s %s/%s in cooldown", fixture_id, opp.market.value, tier.value)
                    continue
                try:
                    delivered = self.dispatcher.dispatch(opp, tier)
                except Exception as e:
                    log.exception("[MONITOR] Dispatch failed for %s: %s", fixture_id, e)
                    delivered = False
                entry.sent_alerts[key] = now
                if delivered:
                    with self._stats_lock:
                        self.alerts_total += 1
            return True

    # ---------- queries ----------

    def get_stats(self) -> MonitoringStats:
        """Point-in-time view of the monitor."""
        midnight = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        try:
            alerts_today = self.repository.count_alerts_since(midnight.timestamp())
        except Exception as e:
            log.warning("[MONITOR] Alert count unavailable: %s", e)
            alerts_today = self.alerts_total

        next_cycle = None
        if self.running:
            try:
                next_cycle = self.scheduler.next_run_time(CYCLE_JOB_ID)
            except Exception as e:
                log.debug("[MONITOR] next_run_time unavailable: %s", e)

        last = None
        if self.last_cycle_at is not None:
            last = datetime.fromtimestamp(self.last_cycle_at, tz=timezone.utc)

        with self._entries_lock:
            watched = len(self.entries)
        with self._stats_lock:
            total = self.alerts_total

        return MonitoringStats(
            is_running=self.running,
            watched_fixtures=watched,
            alerts_today=alerts_today,
            alerts_total=total,
            success_rate=self.dispatcher.success_rate(),
            last_cycle_at=last,
            next_cycle_at=next_cycle,
        )

    def simulate(self, fixture_id: str, tier: Tier) -> Optional[Tuple[Opportunity, AlertMessages]]:
        """Detect and format for one fixture without sending anything."""
        opp = self.detector.detect(fixture_id, tier)
        if opp is None:
            log.info("[SIMULATE] No opportunity for %s at %s", fixture_id, Tier(tier).value)
            return None
        messages = self.dispatcher.formatter.format(opp, tier)
        log.info("[SIMULATE] %s %s -> %s", fixture_id, Tier(tier).value, opp.market.value)
        return opp, messages
