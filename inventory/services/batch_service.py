"""
Batch Ledger Service - authoritative per-item stock split into dated batches
"""
import logging
from typing import Dict, Any, List, Iterable
from decimal import Decimal
from datetime import datetime, timedelta
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from inventory.models import InventoryItem, Batch
from inventory.services.base_service import (
    BaseService, success_response,
    ValidationError, NotFoundError, InvalidStateError, InsufficientStockError,
    parse_quantity, normalize_expiration,
)
from inventory.services.audit_service import AuditService, AuditAction
from inventory.services.event_service import publish, EventName
from inventory.services.locks import item_lock
from inventory.services.alert_service import days_left

logger = logging.getLogger(__name__)


class BatchLedgerService(BaseService):
    """
    The only writer of Batch rows.

    Item totals and status are never stored: they are derived from the
    non-disposed batches every time they are read.
    """

    model = Batch

    # ==================== SERIALIZATION ====================

    @classmethod
    def serialize(cls, batch: Batch, now: datetime = None) -> Dict[str, Any]:
        now = now or timezone.now()
        return {
            "id": batch.id,
            "uuid": str(batch.uuid),
            "item_id": batch.item_id,
            "initial_quantity": str(batch.initial_quantity),
            "quantity": str(batch.quantity),
            "expiration_date": batch.expiration_date.isoformat(),
            "days_left": days_left(batch.expiration_date, now),
            "received_at": batch.received_at.isoformat(),
            "is_disposed": batch.is_disposed,
            "disposed_at": batch.disposed_at.isoformat() if batch.disposed_at else None,
            "disposal_reason": batch.disposal_reason,
        }

    # ==================== LOOKUPS ====================

    @classmethod
    def get_item(cls, item_id: Any, lock: bool = False, active_only: bool = True) -> InventoryItem:
        queryset = InventoryItem.objects.all()
        if active_only:
            queryset = queryset.filter(is_active=True)
        if lock:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(id=item_id)
        except (InventoryItem.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Inventory item", item_id)

    @classmethod
    def available_quantity(cls, item_id: Any) -> Decimal:
        """Physical stock: sum of non-disposed batch quantities."""
        item = cls.get_item(item_id, active_only=False)
        total = Batch.objects.filter(item=item, is_disposed=False).aggregate(
            total=Sum("quantity")
        )["total"]
        return total or Decimal("0")

    @classmethod
    def list_batches(cls, item_id: Any, include_disposed: bool = False) -> List[Batch]:
        item = cls.get_item(item_id, active_only=False)
        queryset = Batch.objects.filter(item=item)
        if not include_disposed:
            queryset = queryset.filter(is_disposed=False)
        return list(queryset.order_by("expiration_date", "received_at", "id"))

    @classmethod
    def expired_batches(cls, item_id: Any = None, now: datetime = None) -> List[Batch]:
        """Non-disposed batches with stock whose expiration day has fully passed."""
        now = now or timezone.now()
        queryset = Batch.objects.filter(
            is_disposed=False,
            quantity__gt=0,
            item__is_active=True,
            expiration_date__lte=now - timedelta(days=1),
        ).select_related("item")
        if item_id is not None:
            item = cls.get_item(item_id, active_only=False)
            queryset = queryset.filter(item=item)
        return list(queryset.order_by("expiration_date", "received_at", "id"))

    @classmethod
    def get(cls, batch_id: Any) -> Dict[str, Any]:
        return success_response({
            "batch": cls.serialize(cls.get_or_404(batch_id))
        })

    # ==================== RESTOCK ====================

    @classmethod
    def append_batch(cls,
                     item: InventoryItem,
                     quantity: Decimal,
                     expiration_date: datetime,
                     received_at: datetime = None) -> Batch:
        return Batch.objects.create(
            item=item,
            initial_quantity=quantity,
            quantity=quantity,
            expiration_date=expiration_date,
            received_at=received_at or timezone.now(),
        )

    @classmethod
    def restock(cls,
                item_id: Any,
                quantity: Any,
                expiration_date: Any,
                actor: Any = None,
                received_at: datetime = None) -> Batch:
        quantity = parse_quantity(quantity)
        expiration = normalize_expiration(expiration_date)
        item = cls.get_item(item_id)

        with item_lock(item.id), transaction.atomic():
            item = cls.get_item(item.id, lock=True)
            batch = cls.append_batch(item, quantity, expiration, received_at)

            AuditService.record(
                AuditAction.RESTOCK, item.id, actor,
                batch_id=batch.id,
                quantity=str(quantity),
                expiration_date=expiration.isoformat(),
            )

        logger.info(f"Restocked {item.name}: +{quantity} {item.unit} (batch {batch.id}, expires {expiration.date()})")
        return batch

    # ==================== CONSUME (FIFO BY EXPIRATION) ====================

    @classmethod
    def consume(cls,
                item_id: Any,
                quantity: Any,
                actor: Any = None,
                protected_quantity: Any = Decimal("0"),
                reference: str = None) -> InventoryItem:
        """
        Deplete batches earliest-expiring first.

        `protected_quantity` is stock that must stay on hand (active holds);
        only the remainder can be consumed. Either the whole quantity is taken
        or nothing changes.
        """
        quantity = parse_quantity(quantity)
        protected = parse_quantity(protected_quantity, "protected_quantity", allow_zero=True)
        item = cls.get_item(item_id)

        with item_lock(item.id), transaction.atomic():
            item = cls.get_item(item.id, lock=True)
            batches = list(
                Batch.objects.select_for_update()
                .filter(item=item, is_disposed=False, quantity__gt=0)
                .order_by("expiration_date", "received_at", "id")
            )

            on_hand = sum((b.quantity for b in batches), Decimal("0"))
            usable = on_hand - protected
            if usable < quantity:
                logger.warning(
                    f"Consume rejected for {item.name}: requested {quantity}, "
                    f"on hand {on_hand}, protected {protected}"
                )
                raise InsufficientStockError(item.name, quantity, max(usable, Decimal("0")), item.id)

            remaining = quantity
            depletions = []
            for batch in batches:
                if remaining <= 0:
                    break
                take = min(batch.quantity, remaining)
                batch.quantity -= take
                batch.save(update_fields=["quantity", "updated_at"])
                depletions.append({"batch_id": batch.id, "quantity": str(take)})
                remaining -= take

            AuditService.record(
                AuditAction.CONSUME, item.id, actor,
                quantity=str(quantity),
                depletions=depletions,
                reference=reference,
            )

        logger.info(f"Consumed {quantity} {item.unit} of {item.name} from {len(depletions)} batch(es)")
        return item

    # ==================== DISPOSE ====================

    @classmethod
    def _parse_batch_ids(cls, batch_ids: Any) -> List[int]:
        if not isinstance(batch_ids, (list, tuple, set)) or not batch_ids:
            raise ValidationError("batch_ids must be a non-empty list", "batch_ids")
        parsed = []
        for batch_id in batch_ids:
            try:
                parsed.append(int(batch_id))
            except (ValueError, TypeError):
                raise ValidationError(f"Invalid batch id: {batch_id!r}", "batch_ids")
        return list(dict.fromkeys(parsed))

    @classmethod
    def dispose(cls,
                item_id: Any,
                batch_ids: Iterable,
                actor: Any = None,
                reason: str = "") -> InventoryItem:
        """
        Write off batches: quantity forced to 0 and flagged disposed.
        Already disposed or empty batches are left untouched.
        """
        ids = cls._parse_batch_ids(batch_ids)
        item = cls.get_item(item_id)

        with item_lock(item.id), transaction.atomic():
            item = cls.get_item(item.id, lock=True)
            batches = {
                b.id: b for b in
                Batch.objects.select_for_update().filter(item=item, id__in=ids)
            }
            missing = [batch_id for batch_id in ids if batch_id not in batches]
            if missing:
                raise NotFoundError("Batch", ", ".join(str(m) for m in missing))

            now = timezone.now()
            written_off = []
            for batch_id in ids:
                batch = batches[batch_id]
                if batch.is_disposed or batch.quantity <= 0:
                    continue
                written_off.append({"batch_id": batch.id, "quantity": str(batch.quantity)})
                batch.quantity = Decimal("0")
                batch.is_disposed = True
                batch.disposed_at = now
                batch.disposal_reason = reason or ""
                batch.save(update_fields=[
                    "quantity", "is_disposed", "disposed_at", "disposal_reason", "updated_at"
                ])

            if written_off:
                AuditService.record(
                    AuditAction.DISPOSE, item.id, actor,
                    batches=written_off,
                    reason=reason,
                )
                publish(EventName.BATCH_DISPOSED, {
                    "item_id": item.id,
                    "item_name": item.name,
                    "unit": item.unit,
                    "batches": written_off,
                    "reason": reason,
                    "actor": str(actor) if actor is not None else None,
                })

        if written_off:
            logger.info(f"Disposed {len(written_off)} batch(es) of {item.name}")
        else:
            logger.debug(f"Dispose for {item.name} was a no-op: {ids}")
        return item

    # ==================== COUNT OVERWRITE ====================

    @classmethod
    def set_batch_quantity(cls,
                           item_id: Any,
                           batch_id: Any,
                           counted_quantity: Any,
                           actor: Any = None,
                           source: str = "daily_count") -> Decimal:
        """
        Overwrite a batch with a physical count, bypassing FIFO.
        Returns the delta (counted - previous).
        """
        counted = parse_quantity(counted_quantity, "counted_quantity", allow_zero=True)
        item = cls.get_item(item_id)

        with item_lock(item.id), transaction.atomic():
            item = cls.get_item(item.id, lock=True)
            try:
                batch = Batch.objects.select_for_update().get(id=batch_id, item=item)
            except (Batch.DoesNotExist, ValueError, TypeError):
                raise NotFoundError("Batch", batch_id)

            if batch.is_disposed:
                raise InvalidStateError(
                    f"Batch {batch.id} is disposed and cannot be counted",
                    "batch_disposed",
                )

            previous = batch.quantity
            delta = counted - previous
            batch.quantity = counted
            batch.save(update_fields=["quantity", "updated_at"])

            AuditService.record(
                AuditAction.COUNT_ADJUSTMENT, item.id, actor,
                batch_id=batch.id,
                previous_quantity=str(previous),
                counted_quantity=str(counted),
                delta=str(delta),
                source=source,
            )

        logger.info(f"Batch {batch.id} of {item.name} set to {counted} (delta {delta})")
        return delta
