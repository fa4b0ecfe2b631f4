"""
Audit trail for inventory mutations.

Services never write audit storage themselves: they call
AuditService.record(), which hands an AuditRecord to the configured sink
(settings.INVENTORY_AUDIT_SINK, a dotted path to an AuditSink subclass).
"""
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, Any, Optional

from django.conf import settings
from django.utils import timezone
from django.utils.module_loading import import_string

from inventory.models import AuditEntry
from inventory.services.base_service import paginate_queryset, success_response

logger = logging.getLogger(__name__)


class AuditAction:
    ITEM_CREATED = "ITEM_CREATED"
    ITEM_UPDATED = "ITEM_UPDATED"
    ITEM_DELETED = "ITEM_DELETED"
    RESTOCK = "RESTOCK"
    CONSUME = "CONSUME"
    DISPOSE = "DISPOSE"
    COUNT_ADJUSTMENT = "COUNT_ADJUSTMENT"
    DAY_STARTED = "DAY_STARTED"
    RESERVATION_CREATED = "RESERVATION_CREATED"
    RESERVATION_COMPLETED = "RESERVATION_COMPLETED"
    RESERVATION_RELEASED = "RESERVATION_RELEASED"
    RESERVATION_EXPIRED = "RESERVATION_EXPIRED"
    RESERVATION_EXTENDED = "RESERVATION_EXTENDED"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"


@dataclass(frozen=True)
class AuditRecord:
    action: str
    item_id: Optional[int]
    actor: str
    timestamp: datetime
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class AuditSink:
    def record(self, entry: AuditRecord) -> None:
        raise NotImplementedError


class DatabaseAuditSink(AuditSink):
    """Writes AuditEntry rows inside the caller's transaction."""

    def record(self, entry: AuditRecord) -> None:
        AuditEntry.objects.create(
            action=entry.action,
            item_id=entry.item_id,
            actor=entry.actor or "",
            timestamp=entry.timestamp,
            details=entry.details,
        )


class LoggingAuditSink(AuditSink):
    def record(self, entry: AuditRecord) -> None:
        logger.info(
            f"AUDIT {entry.action} item={entry.item_id} actor={entry.actor or 'system'} "
            f"details={entry.details}"
        )


class AuditService:
    _sink: Optional[AuditSink] = None

    @classmethod
    def get_sink(cls) -> AuditSink:
        if cls._sink is None:
            sink_path = getattr(
                settings, "INVENTORY_AUDIT_SINK",
                "inventory.services.audit_service.DatabaseAuditSink"
            )
            cls._sink = import_string(sink_path)()
        return cls._sink

    @classmethod
    def set_sink(cls, sink: Optional[AuditSink]) -> None:
        """Swap the sink. None reloads it from settings on next use."""
        cls._sink = sink

    @classmethod
    def record(cls, action: str, item_id: Optional[int], actor: Any = None, **details) -> AuditRecord:
        entry = AuditRecord(
            action=action,
            item_id=item_id,
            actor=str(actor) if actor is not None else "",
            timestamp=timezone.now(),
            details=details,
        )
        cls.get_sink().record(entry)
        return entry

    # ==================== QUERY ====================

    @classmethod
    def serialize(cls, entry: AuditEntry) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "action": entry.action,
            "item_id": entry.item_id,
            "actor": entry.actor,
            "timestamp": entry.timestamp.isoformat(),
            "details": entry.details,
        }

    @classmethod
    def list(cls,
             item_id: int = None,
             action: str = None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = AuditEntry.objects.all()

        if item_id:
            queryset = queryset.filter(item_id=item_id)

        if action:
            queryset = queryset.filter(action=action)

        entries, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "entries": [cls.serialize(e) for e in entries],
            "pagination": pagination,
        })
