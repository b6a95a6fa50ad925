import itertools
import logging
import threading
from typing import Dict, List, Optional, Set

from golazo.core.config import TierSettings, default_tiers
from golazo.core.models import Opportunity, Tier
from golazo.services.formatter import AlertFormatter, AlertMessages
from golazo.services.interfaces import FixtureRepository, Notifier, SubscriberDirectory

log = logging.getLogger("golazo.dispatch")


class AlertDispatcher:
    """Sends the pre-alert now and the main alert after the tier's delay.

    Delayed deliveries are scheduler jobs, tracked per fixture so they can be
    cancelled when the fixture leaves monitoring.
    """

    def __init__(self, notifier: Notifier, subscribers: SubscriberDirectory,
                 scheduler, repository: Optional[FixtureRepository] = None,
                 formatter: Optional[AlertFormatter] = None,
                 tiers: Optional[Dict[Tier, TierSettings]] = None):
        self.notifier = notifier
        self.subscribers = subscribers
        self.scheduler = scheduler
        self.repository = repository
        self.formatter = formatter or AlertFormatter()
        self.tiers = tiers or default_tiers()

        self._lock = threading.Lock()
        self._pending: Dict[str, Set[str]] = {}
        self._seq = itertools.count(1)
        self.attempts = 0
        self.delivered = 0

    # ---------- stats ----------

    def _count(self, ok: bool):
        with self._lock:
            self.attempts += 1
            if ok:
                self.delivered += 1

    def success_rate(self) -> float:
        """Share of notifier sends that succeeded; 1.0 before any attempt."""
        with self._lock:
            return self.delivered / self.attempts if self.attempts else 1.0

    def pending_jobs(self, fixture_id: Optional[str] = None) -> List[str]:
        with self._lock:
            if fixture_id is not None:
                return sorted(self._pending.get(fixture_id, ()))
            return sorted(j for jobs in self._pending.values() for j in jobs)

    # ---------- delivery ----------

    def _send(self, kind: str, send, user_id: str, text: str) -> bool:
        try:
            ok = bool(send(user_id, text))
        except Exception as e:
            log.warning("[DISPATCH] %s to %s raised: %s", kind, user_id, e)
            ok = False
        self._count(ok)
        return ok

    def _deliver_main(self, tier: Tier, messages: AlertMessages, users: List[str]):
        for user in users:
            self._send("main", self.notifier.send_main_alert, user, messages.main_alert)
            if tier != Tier.FREE and messages.detailed_analysis:
                self._send("analysis", self.notifier.send_detailed_analysis, user, messages.detailed_analysis)

    def _run_pending(self, job_id: str, fixture_id: str, tier: Tier,
                     messages: AlertMessages, users: List[str]):
        with self._lock:
            jobs = self._pending.get(fixture_id)
            if not jobs or job_id not in jobs:
                log.info("[DISPATCH] %s was cancelled, skipping", job_id)
                return
            jobs.discard(job_id)
            if not jobs:
                self._pending.pop(fixture_id, None)
        log.info("[DISPATCH] Delivering delayed main alert %s", job_id)
        self._deliver_main(tier, messages, users)

    def dispatch(self, opp: Opportunity, tier: Tier) -> bool:
        """Hand an opportunity to every subscriber of ``tier``; False if nobody received it."""
        tier = Tier(tier)
        try:
            users = list(self.subscribers.get_users_by_tier(tier))
        except Exception as e:
            log.warning("[DISPATCH] Subscriber lookup failed for %s: %s", tier.value, e)
            return False
        if not users:
            log.info("[DISPATCH] No %s subscribers for %s/%s", tier.value, opp.fixture_id, opp.market.value)
            return False

        try:
            messages = self.formatter.format(opp, tier)
        except Exception as e:
            log.exception("[DISPATCH] Formatting failed for %s: %s", opp.fixture_id, e)
            return False

        if self.repository is not None:
            try:
                self.repository.record_alert_sent(opp.fixture_id, opp.market, tier)
            except Exception as e:
                log.warning("[DISPATCH] Could not record alert for %s: %s", opp.fixture_id, e)

        for user in users:
            self._send("pre-alert", self.notifier.send_pre_alert, user, messages.pre_alert)

        delay = self.tiers[tier].alert_delay_sec
        if delay <= 0:
            self._deliver_main(tier, messages, users)
        else:
            job_id = f"alert:{opp.fixture_id}:{opp.market.value}:{tier.value}:{next(self._seq)}"
            with self._lock:
                self._pending.setdefault(opp.fixture_id, set()).add(job_id)
            try:
                self.scheduler.add_delayed_job(
                    self._run_pending, delay, job_id,
                    args=(job_id, opp.fixture_id, tier, messages, users),
                )
            except Exception as e:
                log.warning("[DISPATCH] Could not schedule %s, sending now: %s", job_id, e)
                with self._lock:
                    self._pending.get(opp.fixture_id, set()).discard(job_id)
                self._deliver_main(tier, messages, users)

        log.info("[DISPATCH] %s %s -> %d %s subscriber(s), main in %ss",
                 opp.fixture_id, opp.market.value, len(users), tier.value, max(0, delay))
        return True

    # ---------- cancellation ----------

    def cancel_pending(self, fixture_id: str) -> int:
        """Cancel delayed alerts for one fixture; returns how many were dropped."""
        with self._lock:
            jobs = self._pending.pop(fixture_id, set())
        for job_id in jobs:
            self.scheduler.cancel(job_id)
        if jobs:
            log.info("[DISPATCH] Cancelled %d pending alert(s) for %s", len(jobs), fixture_id)
        return len(jobs)

    def cancel_all(self) -> int:
        """Cancel every delayed alert."""
        with self._lock:
            fixture_ids = list(self._pending)
        return sum(self.cancel_pending(fid) for fid in fixture_ids)
