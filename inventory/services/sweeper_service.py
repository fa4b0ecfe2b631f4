"""
Expiry Sweeper - periodic reservation TTL enforcement and expiry alerts

run_once() is the whole job; start()/shutdown() run it on an APScheduler
BackgroundScheduler inside the web process. The run_expiry_sweeper
management command runs the same job on a BlockingScheduler.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from django.conf import settings
from django.utils import timezone

from inventory.services.alert_service import AlertEngine, Alert, diff_alerts, sort_by_priority
from inventory.services.event_service import publish, EventName
from inventory.services.reservation_service import ReservationService

logger = logging.getLogger(__name__)

JOB_ID = "inventory_expiry_sweep"


@dataclass
class SweepResult:
    ran_at: datetime
    expired_reservations: List[int] = field(default_factory=list)
    failed_reservations: List[Dict[str, Any]] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)
    raised: List[Alert] = field(default_factory=list)
    cleared: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ran_at": self.ran_at.isoformat(),
            "expired_reservations": self.expired_reservations,
            "failed_reservations": self.failed_reservations,
            "alert_count": len(self.alerts),
            "raised": [a.to_dict() for a in self.raised],
            "cleared": self.cleared,
        }


class ExpirySweeper:
    """
    Remembers the alert fingerprints of its previous run so an unchanged
    alert is published once, not on every tick.
    """

    def __init__(self, include_stock_alerts: bool = True):
        self.include_stock_alerts = include_stock_alerts
        self._seen_fingerprints: set = set()
        self._run_lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None

    def run_once(self, now: datetime = None) -> SweepResult:
        with self._run_lock:
            now = now or timezone.now()
            result = SweepResult(ran_at=now)

            outcome = ReservationService.expire_overdue(now)
            result.expired_reservations = outcome["expired"]
            result.failed_reservations = outcome["failed"]

            result.alerts = AlertEngine.evaluate(
                now=now, include_stock=self.include_stock_alerts
            )
            diff = diff_alerts(self._seen_fingerprints, result.alerts)
            result.raised = sort_by_priority(diff.raised)
            result.cleared = len(diff.cleared)

            for alert in result.raised:
                publish(EventName.STOCK_ALERT_RAISED, alert.to_dict(), occurred_at=now)

            self._seen_fingerprints = diff.fingerprints

            if result.expired_reservations or result.raised or result.failed_reservations:
                logger.info(
                    f"Sweep at {now.isoformat()}: {len(result.expired_reservations)} expired, "
                    f"{len(result.failed_reservations)} failed, {len(result.raised)} new alert(s)"
                )
            return result

    def _job(self):
        try:
            self.run_once()
        except Exception:
            logger.exception("Expiry sweep failed")

    # ==================== SCHEDULING ====================

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self, interval_seconds: int = None) -> BackgroundScheduler:
        if self.running:
            return self._scheduler

        interval = interval_seconds or getattr(settings, "INVENTORY_SWEEPER_INTERVAL_SECONDS", 60)
        scheduler = BackgroundScheduler(daemon=True)
        scheduler.add_job(
            self._job,
            IntervalTrigger(seconds=interval),
            id=JOB_ID,
            name='Expire reservations and raise expiry alerts',
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"Expiry sweeper started, every {interval}s")
        return scheduler

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("Expiry sweeper stopped")


_sweeper: Optional[ExpirySweeper] = None
_sweeper_lock = threading.Lock()


def get_expiry_sweeper() -> ExpirySweeper:
    global _sweeper
    with _sweeper_lock:
        if _sweeper is None:
            _sweeper = ExpirySweeper()
        return _sweeper


def start_sweeper_on_ready() -> None:
    if not getattr(settings, "INVENTORY_SWEEPER_AUTOSTART", False):
        return
    get_expiry_sweeper().start()
