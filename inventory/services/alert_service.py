"""
Alert Engine - stock and expiration alerts computed from current state

The engine keeps no memory between calls: evaluate() always returns the full
current alert set. Callers that only want to react to changes keep the
fingerprints of the previous run and use diff_alerts().
"""
import hashlib
import json
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Iterable, Union
from decimal import Decimal
from datetime import datetime, timedelta
from django.db.models import Prefetch
from django.utils import timezone

from inventory.models import InventoryItem, Batch, InventorySettings

DAY = timedelta(days=1)


class AlertType:
    STOCK = "stock"
    EXPIRATION = "expiration"


class Severity:
    OUT = "out"
    EXPIRED = "expired"
    LOW = "low"
    EXPIRING_SOON = "expiring_soon"


# Display priority, lower first
PRIORITY = {
    Severity.OUT: 0,
    Severity.EXPIRED: 1,
    Severity.LOW: 2,
    Severity.EXPIRING_SOON: 3,
}


def days_left(expiration_date: datetime, now: datetime) -> int:
    """ceil((expiration - now) / 1 day), in exact integer arithmetic."""
    delta = expiration_date - now
    return -(-delta // DAY) if delta % DAY else delta // DAY


@dataclass(frozen=True)
class Alert:
    type: str
    item_id: int
    message: str
    severity: str
    observed_at: datetime
    batch_id: Optional[int] = None
    item_name: str = ""
    quantity: Optional[Decimal] = None
    days_left: Optional[int] = None

    @property
    def fingerprint(self) -> str:
        return alert_fingerprint(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "item_id": self.item_id,
            "batch_id": self.batch_id,
            "item_name": self.item_name,
            "message": self.message,
            "severity": self.severity,
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "days_left": self.days_left,
            "observed_at": self.observed_at.isoformat(),
            "fingerprint": self.fingerprint,
        }


def alert_fingerprint(alert: Alert) -> str:
    """Identity of an alert. Observation time, message and quantity are left out."""
    key = json.dumps([
        alert.type, alert.item_id, alert.batch_id, alert.severity, alert.days_left
    ])
    return hashlib.sha256(key.encode()).hexdigest()


@dataclass
class AlertDiff:
    raised: List[Alert] = field(default_factory=list)
    cleared: List[str] = field(default_factory=list)
    fingerprints: set = field(default_factory=set)


def diff_alerts(previous: Iterable[Union[Alert, str]], current: Iterable[Alert]) -> AlertDiff:
    """Compare the previous run (alerts or fingerprints) with the current one."""
    previous_fps = {
        p if isinstance(p, str) else alert_fingerprint(p) for p in previous
    }
    diff = AlertDiff()
    for alert in current:
        fp = alert_fingerprint(alert)
        if fp in diff.fingerprints:
            continue
        diff.fingerprints.add(fp)
        if fp not in previous_fps:
            diff.raised.append(alert)
    diff.cleared = sorted(previous_fps - diff.fingerprints)
    return diff


def sort_by_priority(alerts: Iterable[Alert]) -> List[Alert]:
    """out > expired > low > expiring_soon; sooner expiry first within a severity."""
    return sorted(
        alerts,
        key=lambda a: (
            PRIORITY.get(a.severity, len(PRIORITY)),
            a.days_left if a.days_left is not None else 0,
            a.item_name,
            a.batch_id or 0,
        )
    )


class AlertEngine:

    @classmethod
    def _items(cls, items: Optional[Iterable] = None) -> List[InventoryItem]:
        live_batches = Prefetch(
            "batches",
            queryset=Batch.objects.filter(is_disposed=False).order_by(
                "expiration_date", "received_at", "id"
            ),
            to_attr="live_batches",
        )
        if items is None:
            queryset = InventoryItem.objects.filter(is_active=True)
        else:
            ids = [i.id if isinstance(i, InventoryItem) else i for i in items]
            queryset = InventoryItem.objects.filter(id__in=ids)
        return list(queryset.prefetch_related(live_batches).order_by("name", "id"))

    @classmethod
    def stock_alert(cls, item: InventoryItem, total: Decimal,
                    settings: InventorySettings, now: datetime) -> Optional[Alert]:
        threshold = item.effective_threshold(settings)
        if total > threshold:
            return None

        if total <= 0:
            severity = Severity.OUT
            message = f"{item.name} is out of stock"
        else:
            severity = Severity.LOW
            message = (
                f"{item.name} is running low: {total.normalize():f} {item.unit} left "
                f"(minimum {threshold.normalize():f})"
            )

        return Alert(
            type=AlertType.STOCK,
            item_id=item.id,
            message=message,
            severity=severity,
            observed_at=now,
            item_name=item.name,
            quantity=total,
        )

    @classmethod
    def expiration_alert(cls, item: InventoryItem, batch: Batch,
                         settings: InventorySettings, now: datetime) -> Optional[Alert]:
        if batch.is_disposed or batch.quantity <= 0:
            return None

        remaining = days_left(batch.expiration_date, now)
        lookahead = settings.expiry_lookahead_days
        if lookahead is not None and remaining > lookahead:
            return None

        label = f"{item.name} batch #{batch.id} ({batch.quantity.normalize():f} {item.unit})"
        if remaining < 0:
            severity = Severity.EXPIRED
            message = f"{label} expired {-remaining} day(s) ago"
        elif remaining == 0:
            severity = Severity.EXPIRING_SOON
            message = f"{label} expires today"
        else:
            severity = Severity.EXPIRING_SOON
            message = f"{label} expires in {remaining} day(s)"

        return Alert(
            type=AlertType.EXPIRATION,
            item_id=item.id,
            batch_id=batch.id,
            message=message,
            severity=severity,
            observed_at=now,
            item_name=item.name,
            quantity=batch.quantity,
            days_left=remaining,
        )

    @classmethod
    def evaluate(cls,
                 items: Optional[Iterable] = None,
                 now: datetime = None,
                 settings: InventorySettings = None,
                 include_stock: bool = True,
                 include_expiration: bool = True) -> List[Alert]:
        """
        Full current alert set for `items` (default: every active item).
        Settings toggles switch off a whole alert family.
        """
        now = now or timezone.now()
        settings = settings or InventorySettings.load()
        include_stock = include_stock and settings.low_stock_alert_enabled
        include_expiration = include_expiration and settings.expiry_alert_enabled

        alerts = []
        for item in cls._items(items):
            batches = item.live_batches

            if include_stock:
                total = sum((b.quantity for b in batches), Decimal("0"))
                alert = cls.stock_alert(item, total, settings, now)
                if alert:
                    alerts.append(alert)

            if include_expiration:
                for batch in batches:
                    alert = cls.expiration_alert(item, batch, settings, now)
                    if alert:
                        alerts.append(alert)

        return alerts

    @classmethod
    def summary(cls, alerts: Iterable[Alert]) -> Dict[str, int]:
        counts = {severity: 0 for severity in PRIORITY}
        for alert in alerts:
            counts[alert.severity] = counts.get(alert.severity, 0) + 1
        return counts
