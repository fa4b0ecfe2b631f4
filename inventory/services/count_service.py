"""
Daily Count Service - start-of-day snapshots and end-of-day reconciliation
"""
import logging
from typing import Dict, Any, List, Tuple
from decimal import Decimal
from datetime import datetime
from django.db import transaction
from django.db.models import Sum, Count

from inventory.models import InventoryItem, Batch, DaySnapshot, DailyCountEntry
from inventory.services.base_service import (
    BaseService, success_response,
    ServiceError, ValidationError, NotFoundError,
    parse_quantity, business_today, parse_business_date,
)
from inventory.services.audit_service import AuditService, AuditAction
from inventory.services.batch_service import BatchLedgerService
from inventory.services.locks import item_lock

logger = logging.getLogger(__name__)


class DailyCountService(BaseService):
    model = DailyCountEntry

    # ==================== SERIALIZATION ====================

    @classmethod
    def serialize(cls, entry: DailyCountEntry) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "item_id": entry.item_id,
            "batch_id": entry.batch_id,
            "business_date": entry.business_date.isoformat(),
            "start_quantity": str(entry.start_quantity) if entry.start_quantity is not None else None,
            "system_quantity": str(entry.system_quantity),
            "counted_quantity": str(entry.counted_quantity),
            "variance": str(entry.variance),
            "counted_by": entry.counted_by,
            "counted_at": entry.counted_at.isoformat(),
        }

    @classmethod
    def serialize_snapshot(cls, snapshot: DaySnapshot) -> Dict[str, Any]:
        return {
            "item_id": snapshot.item_id,
            "batch_id": snapshot.batch_id,
            "business_date": snapshot.business_date.isoformat(),
            "quantity": str(snapshot.quantity),
            "taken_by": snapshot.taken_by,
            "taken_at": snapshot.taken_at.isoformat(),
        }

    # ==================== START OF DAY ====================

    @classmethod
    def start_day(cls, item_id: Any = None, actor: Any = None, now: datetime = None) -> Dict[str, Any]:
        """
        Snapshot per-batch quantities as today's baseline.
        Without item_id every active item is snapshotted. Re-running replaces
        the day's baseline.
        """
        business_date = business_today(now)
        if item_id is not None:
            items = [BatchLedgerService.get_item(item_id)]
        else:
            items = list(InventoryItem.objects.filter(is_active=True).order_by("name", "id"))

        results = []
        snapshot_count = 0
        for item in items:
            with item_lock(item.id), transaction.atomic():
                batches = Batch.objects.filter(item=item, is_disposed=False).order_by(
                    "expiration_date", "received_at", "id"
                )
                snapshots = []
                for batch in batches:
                    snapshot, _ = DaySnapshot.objects.update_or_create(
                        batch=batch,
                        business_date=business_date,
                        defaults={
                            "item": item,
                            "quantity": batch.quantity,
                            "taken_by": str(actor) if actor is not None else "",
                        },
                    )
                    snapshots.append(snapshot)

                AuditService.record(
                    AuditAction.DAY_STARTED, item.id, actor,
                    business_date=business_date.isoformat(),
                    batches={str(s.batch_id): str(s.quantity) for s in snapshots},
                )

            snapshot_count += len(snapshots)
            results.append({
                "item_id": item.id,
                "item_name": item.name,
                "batches": [
                    {"batch_id": s.batch_id, "quantity": str(s.quantity)} for s in snapshots
                ],
            })

        logger.info(f"Start of day {business_date}: {snapshot_count} batch snapshot(s) for {len(items)} item(s)")
        return success_response({
            "business_date": business_date.isoformat(),
            "items": results,
            "snapshot_count": snapshot_count,
        }, f"Start of day recorded for {len(items)} item(s)")

    @classmethod
    def snapshots(cls, item_id: Any, business_date: Any = None) -> List[DaySnapshot]:
        item = BatchLedgerService.get_item(item_id, active_only=False)
        day = parse_business_date(business_date, "business_date") if business_date else business_today()
        return list(
            DaySnapshot.objects.filter(item=item, business_date=day).order_by("batch_id")
        )

    # ==================== END OF DAY ====================

    @classmethod
    def _parse_counts(cls, counted_batches: Any) -> List[Tuple[int, Decimal]]:
        if not isinstance(counted_batches, (list, tuple)) or not counted_batches:
            raise ValidationError("counted_batches must be a non-empty list", "counted_batches")

        parsed = []
        seen = set()
        for position, entry in enumerate(counted_batches):
            if not isinstance(entry, dict) or "batch_id" not in entry:
                raise ValidationError(
                    f"counted_batches[{position}] must have batch_id and quantity", "counted_batches"
                )
            try:
                batch_id = int(entry["batch_id"])
            except (ValueError, TypeError):
                raise ValidationError(f"Invalid batch id: {entry['batch_id']!r}", "counted_batches")
            if batch_id in seen:
                raise ValidationError(f"Batch {batch_id} is counted more than once", "counted_batches")
            seen.add(batch_id)

            quantity = parse_quantity(
                entry.get("quantity"), f"counted_batches[{position}].quantity", allow_zero=True
            )
            parsed.append((batch_id, quantity))
        return parsed

    @classmethod
    def end_day(cls,
                item_id: Any,
                counted_batches: List[Dict[str, Any]],
                actor: Any = None,
                now: datetime = None) -> InventoryItem:
        """
        Apply a physical count to one item, all batches or none.

        variance = last known quantity - counted. The last known quantity is
        today's start-of-day snapshot; a batch received after start_day falls
        back to its received quantity, any other batch to the ledger's
        current quantity.
        """
        counts = cls._parse_counts(counted_batches)
        item = BatchLedgerService.get_item(item_id)
        business_date = business_today(now)

        with item_lock(item.id), transaction.atomic():
            item = BatchLedgerService.get_item(item.id, lock=True)
            batches = {
                b.id: b for b in
                Batch.objects.select_for_update().filter(item=item, id__in=[c[0] for c in counts])
            }

            for batch_id, _ in counts:
                batch = batches.get(batch_id)
                if batch is None:
                    raise NotFoundError("Batch", batch_id)
                if batch.is_disposed:
                    raise ValidationError(f"Batch {batch_id} is disposed and cannot be counted", "counted_batches")

            snapshots = {
                s.batch_id: s.quantity for s in
                DaySnapshot.objects.filter(batch_id__in=batches.keys(), business_date=business_date)
            }

            entries = []
            for batch_id, counted in counts:
                batch = batches[batch_id]
                start = snapshots.get(batch_id)
                system = batch.quantity
                if start is not None:
                    last_known = start
                elif business_today(batch.received_at) == business_date:
                    last_known = batch.initial_quantity
                else:
                    last_known = system
                variance = last_known - counted

                BatchLedgerService.set_batch_quantity(item.id, batch_id, counted, actor)

                entries.append(DailyCountEntry(
                    item=item,
                    batch_id=batch_id,
                    business_date=business_date,
                    start_quantity=start,
                    system_quantity=system,
                    counted_quantity=counted,
                    variance=variance,
                    counted_by=str(actor) if actor is not None else "",
                ))
            DailyCountEntry.objects.bulk_create(entries)

        logger.info(f"End of day {business_date} applied to {item.name}: {len(entries)} batch(es)")
        return item

    @classmethod
    def bulk_end_day(cls, entries: Any, actor: Any = None, now: datetime = None) -> Dict[str, Any]:
        """
        end_day for several items. Each item stands alone: a failing item is
        reported in "failed" and does not block the others.
        """
        if not isinstance(entries, (list, tuple)):
            raise ValidationError("entries must be a list", "entries")

        updated = []
        failed = []
        for position, entry in enumerate(entries):
            item_id = entry.get("item_id") if isinstance(entry, dict) else None
            try:
                if item_id is None:
                    raise ValidationError(f"entries[{position}].item_id is required", "item_id")
                item = cls.end_day(item_id, entry.get("counted_batches"), actor, now)
                total = item.total_quantity
                updated.append({
                    "item_id": item.id,
                    "item_name": item.name,
                    "total_quantity": str(total),
                    "status": item.compute_status(total),
                })
            except ServiceError as e:
                logger.warning(f"End of day failed for item {item_id}: {e.message}")
                failed.append({
                    "item_id": item_id,
                    "code": e.code,
                    "error": e.message,
                    "details": e.details,
                })

        logger.info(f"Bulk end of day: {len(updated)} updated, {len(failed)} failed")
        return {"updated": updated, "failed": failed}

    # ==================== REPORTS ====================

    @classmethod
    def entries(cls, item_id: Any = None, business_date: Any = None) -> List[DailyCountEntry]:
        queryset = DailyCountEntry.objects.select_related("item")
        if item_id is not None:
            item = BatchLedgerService.get_item(item_id, active_only=False)
            queryset = queryset.filter(item=item)
        if business_date:
            queryset = queryset.filter(business_date=parse_business_date(business_date, "business_date"))
        return list(queryset.order_by("-business_date", "item_id", "batch_id", "-id"))

    @classmethod
    def usage_report(cls, start_date: Any, end_date: Any, item_id: Any = None) -> Dict[str, Any]:
        """Per-item usage (summed variance) over a business-date range, inclusive."""
        start = parse_business_date(start_date, "start_date")
        end = parse_business_date(end_date, "end_date")
        if start > end:
            raise ValidationError("start_date must not be after end_date", "start_date")

        queryset = DailyCountEntry.objects.filter(business_date__gte=start, business_date__lte=end)
        if item_id is not None:
            item = BatchLedgerService.get_item(item_id, active_only=False)
            queryset = queryset.filter(item=item)

        rows = queryset.values("item_id", "item__name", "item__unit").annotate(
            usage=Sum("variance"),
            counted=Sum("counted_quantity"),
            count_entries=Count("id"),
            days=Count("business_date", distinct=True),
        ).order_by("item__name", "item_id")

        report = [
            {
                "item_id": row["item_id"],
                "item_name": row["item__name"],
                "unit": row["item__unit"],
                "usage": str(row["usage"] or Decimal("0")),
                "counted_total": str(row["counted"] or Decimal("0")),
                "count_entries": row["count_entries"],
                "days_counted": row["days"],
            }
            for row in rows
        ]

        return success_response({
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "items": report,
        })
