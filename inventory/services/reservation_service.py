"""
Reservation Service - TTL-bound holds against sellable stock

State machine: active -> completed | released | expired. Terminal states are
final. Holds never touch the ledger; only complete() turns them into real
consumption.
"""
import logging
from typing import Dict, Any, Optional, List, Tuple
from decimal import Decimal
from datetime import datetime, timedelta
from django.db import transaction, IntegrityError
from django.db.models import Sum, Count
from django.utils import timezone

from inventory.models import InventoryItem, Reservation, ReservationLine
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset, check_ledger_precision,
    ServiceError, ValidationError, NotFoundError, InvalidStateError, InsufficientStockError,
    parse_quantity,
)
from inventory.services.audit_service import AuditService, AuditAction
from inventory.services.event_service import publish, EventName
from inventory.services.batch_service import BatchLedgerService
from inventory.services.settings_service import InventorySettingsService
from inventory.services.unit_service import UnitConverter
from inventory.services.locks import item_locks, item_lock

logger = logging.getLogger(__name__)


class ReservationService(BaseService):
    model = Reservation

    # ==================== SERIALIZATION ====================

    @classmethod
    def serialize(cls, reservation: Reservation, include_lines: bool = True) -> Dict[str, Any]:
        data = {
            "id": reservation.id,
            "uuid": str(reservation.uuid),
            "order_id": reservation.order_id,
            "status": reservation.status,
            "status_display": reservation.get_status_display(),
            "created_at": reservation.created_at.isoformat(),
            "expires_at": reservation.expires_at.isoformat(),
            "original_expires_at": (
                reservation.original_expires_at.isoformat()
                if reservation.original_expires_at else None
            ),
            "manager_override": reservation.manager_override,
            "override_reason": reservation.override_reason,
            "created_by": reservation.created_by,
            "notes": reservation.notes,
            "release_reason": reservation.release_reason,
            "resolved_at": reservation.resolved_at.isoformat() if reservation.resolved_at else None,
            "extended_by": reservation.extended_by,
            "extended_at": reservation.extended_at.isoformat() if reservation.extended_at else None,
            "extension_reason": reservation.extension_reason,
        }

        if include_lines:
            data["lines"] = [
                {
                    "item_id": line.item_id,
                    "item_name": line.item.name,
                    "unit": line.item.unit,
                    "quantity": str(line.quantity),
                    "position": line.position,
                }
                for line in reservation.lines.select_related("item").order_by("position", "id")
            ]

        return data

    # ==================== QUERIES ====================

    @classmethod
    def get(cls, reservation_id: Any) -> Dict[str, Any]:
        return success_response({
            "reservation": cls.serialize(cls.get_or_404(reservation_id))
        })

    @classmethod
    def get_by_order(cls, order_id: str) -> Optional[Reservation]:
        return Reservation.objects.filter(order_id=order_id).first()

    @classmethod
    def list(cls,
             status: str = None,
             order_id: str = None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = Reservation.objects.all()

        if status:
            valid_statuses = [c[0] for c in Reservation.Status.choices]
            if status not in valid_statuses:
                raise ValidationError(f"Invalid status. Valid: {valid_statuses}", "status")
            queryset = queryset.filter(status=status)

        if order_id:
            queryset = queryset.filter(order_id__icontains=order_id)

        reservations, pagination = paginate_queryset(queryset.order_by("-created_at", "-id"), page, per_page)

        return success_response({
            "reservations": [cls.serialize(r) for r in reservations],
            "pagination": pagination,
            "statuses": [
                {"value": c[0], "label": c[1]}
                for c in Reservation.Status.choices
            ]
        })

    @classmethod
    def reserved_quantity(cls, item_id: Any) -> Decimal:
        """Total held by active reservations, in the item's unit."""
        total = ReservationLine.objects.filter(
            item_id=item_id,
            reservation__status=Reservation.Status.ACTIVE,
        ).aggregate(total=Sum("quantity"))["total"]
        return total or Decimal("0")

    @classmethod
    def sellable(cls, item_id: Any) -> Decimal:
        """Physical stock minus active holds."""
        available = BatchLedgerService.available_quantity(item_id)
        return available - cls.reserved_quantity(item_id)

    @classmethod
    def expiring_soon(cls, minutes: int = None, now: datetime = None) -> List[Reservation]:
        now = now or timezone.now()
        if minutes is None:
            minutes = InventorySettingsService.load().reservation_warning_minutes
        return list(
            Reservation.objects.filter(
                status=Reservation.Status.ACTIVE,
                expires_at__gt=now,
                expires_at__lte=now + timedelta(minutes=minutes),
            ).order_by("expires_at")
        )

    @classmethod
    def overdue(cls, now: datetime = None) -> List[Reservation]:
        now = now or timezone.now()
        return list(
            Reservation.objects.filter(
                status=Reservation.Status.ACTIVE,
                expires_at__lt=now,
            ).order_by("expires_at", "id")
        )

    @classmethod
    def summary(cls, item_id: Any = None) -> Dict[str, Any]:
        by_status = {c[0]: 0 for c in Reservation.Status.choices}
        reservations = Reservation.objects.all()
        if item_id is not None:
            item = BatchLedgerService.get_item(item_id, active_only=False)
            reservations = reservations.filter(lines__item=item).distinct()

        for row in reservations.values("status").annotate(count=Count("id", distinct=True)):
            by_status[row["status"]] = row["count"]

        held = ReservationLine.objects.filter(reservation__status=Reservation.Status.ACTIVE)
        if item_id is not None:
            held = held.filter(item_id=item.id)

        items = []
        rows = held.values("item_id").annotate(
            reserved=Sum("quantity"),
            reservation_count=Count("reservation", distinct=True),
        ).order_by("item_id")
        for row in rows:
            item_obj = InventoryItem.objects.get(id=row["item_id"])
            available = BatchLedgerService.available_quantity(item_obj.id)
            items.append({
                "item_id": item_obj.id,
                "item_name": item_obj.name,
                "unit": item_obj.unit,
                "reserved": str(row["reserved"]),
                "reservation_count": row["reservation_count"],
                "available": str(available),
                "sellable": str(available - row["reserved"]),
            })

        return success_response({
            "by_status": by_status,
            "active_holds": items,
        })

    # ==================== RESERVE ====================

    @classmethod
    def _resolve_ttl(cls, ttl: Any) -> timedelta:
        if ttl is None:
            return InventorySettingsService.default_reservation_ttl()
        if isinstance(ttl, timedelta):
            if ttl <= timedelta(0):
                raise ValidationError("ttl must be positive", "ttl")
            return ttl
        if isinstance(ttl, bool):
            raise ValidationError("ttl must be a number of minutes", "ttl")
        minutes = parse_quantity(ttl, "ttl")
        return timedelta(minutes=float(minutes))

    @classmethod
    def _parse_lines(cls, lines: Any) -> List[Tuple[InventoryItem, Decimal]]:
        if not isinstance(lines, (list, tuple)) or not lines:
            raise ValidationError("At least one reservation line is required", "lines")

        parsed = []
        for position, line in enumerate(lines):
            if not isinstance(line, dict):
                raise ValidationError(f"lines[{position}] must be an object", "lines")
            if "item_id" not in line:
                raise ValidationError(f"lines[{position}].item_id is required", "lines")
            item = BatchLedgerService.get_item(line["item_id"])
            quantity = parse_quantity(line.get("quantity"), f"lines[{position}].quantity")
            quantity = UnitConverter.to_item_unit(item, quantity, line.get("unit"))
            check_ledger_precision(quantity, f"lines[{position}].quantity")
            parsed.append((item, quantity))
        return parsed

    @classmethod
    def reserve(cls,
                order_id: str,
                lines: List[Dict[str, Any]],
                ttl: Any = None,
                actor: Any = None,
                manager_override: bool = False,
                override_reason: str = "",
                notes: str = "",
                now: datetime = None) -> Reservation:
        """
        Hold stock for an order, all lines or none.

        Each line is `{"item_id", "quantity", "unit"?}`; quantities given in
        another compatible unit are converted to the item's unit. Lines for
        the same item are checked together. A manager override accepts the
        reservation even when holds exceed physical stock.
        """
        order_id = str(order_id).strip() if order_id is not None else ""
        if not order_id:
            raise ValidationError("order_id is required", "order_id")

        existing = cls.get_by_order(order_id)
        if existing:
            logger.info(f"Order {order_id} already has reservation {existing.id} ({existing.status})")
            return existing

        if manager_override and not (override_reason or "").strip():
            raise ValidationError("override_reason is required for a manager override", "override_reason")

        ttl = cls._resolve_ttl(ttl)
        parsed = cls._parse_lines(lines)

        totals: Dict[int, Decimal] = {}
        items: Dict[int, InventoryItem] = {}
        for item, quantity in parsed:
            totals[item.id] = totals.get(item.id, Decimal("0")) + quantity
            items[item.id] = item

        with item_locks(totals.keys()), transaction.atomic():
            for item_id in sorted(totals):
                items[item_id] = BatchLedgerService.get_item(item_id, lock=True)

            existing = cls.get_by_order(order_id)
            if existing:
                return existing

            shortages = []
            for item_id in sorted(totals):
                sellable = cls.sellable(item_id)
                if sellable < totals[item_id]:
                    shortages.append({
                        "item_id": item_id,
                        "item": items[item_id].name,
                        "required": str(totals[item_id]),
                        "available": str(max(sellable, Decimal("0"))),
                    })

            if shortages and not manager_override:
                logger.warning(f"Reservation for order {order_id} rejected: {shortages}")
                first = shortages[0]
                error = InsufficientStockError(
                    first["item"], Decimal(first["required"]), Decimal(first["available"]), first["item_id"]
                )
                error.details["shortages"] = shortages
                raise error

            now = now or timezone.now()
            try:
                with transaction.atomic():
                    reservation = Reservation.objects.create(
                        order_id=order_id,
                        expires_at=now + ttl,
                        manager_override=bool(manager_override),
                        override_reason=(override_reason or "").strip() if manager_override else "",
                        created_by=str(actor) if actor is not None else "",
                        notes=notes or "",
                    )
            except IntegrityError:
                existing = cls.get_by_order(order_id)
                if existing is None:
                    raise
                return existing

            ReservationLine.objects.bulk_create([
                ReservationLine(reservation=reservation, item=item, quantity=quantity, position=position)
                for position, (item, quantity) in enumerate(parsed)
            ])

            for item_id in sorted(totals):
                AuditService.record(
                    AuditAction.RESERVATION_CREATED, item_id, actor,
                    reservation_id=reservation.id,
                    order_id=order_id,
                    quantity=str(totals[item_id]),
                    manager_override=reservation.manager_override,
                    shortage=any(s["item_id"] == item_id for s in shortages),
                )

            publish(EventName.RESERVATION_CREATED, cls._event_payload(reservation, totals, items, actor))

        if shortages:
            logger.warning(
                f"Reservation {reservation.id} for order {order_id} created by manager override "
                f"({reservation.override_reason}) despite shortages: {shortages}"
            )
        logger.info(f"Reservation {reservation.id} created for order {order_id}, expires {reservation.expires_at.isoformat()}")
        return reservation

    # ==================== TRANSITIONS ====================

    @classmethod
    def _line_totals(cls, reservation: Reservation) -> Tuple[Dict[int, Decimal], Dict[int, InventoryItem]]:
        totals: Dict[int, Decimal] = {}
        items: Dict[int, InventoryItem] = {}
        for line in reservation.lines.select_related("item"):
            totals[line.item_id] = totals.get(line.item_id, Decimal("0")) + line.quantity
            items[line.item_id] = line.item
        return totals, items

    @classmethod
    def _event_payload(cls, reservation: Reservation, totals: Dict[int, Decimal],
                       items: Dict[int, InventoryItem], actor: Any = None, **extra) -> Dict[str, Any]:
        payload = {
            "reservation_id": reservation.id,
            "order_id": reservation.order_id,
            "status": reservation.status,
            "expires_at": reservation.expires_at.isoformat(),
            "manager_override": reservation.manager_override,
            "lines": [
                {
                    "item_id": item_id,
                    "item_name": items[item_id].name,
                    "unit": items[item_id].unit,
                    "quantity": str(quantity),
                }
                for item_id, quantity in sorted(totals.items())
            ],
            "actor": str(actor) if actor is not None else None,
        }
        payload.update(extra)
        return payload

    @classmethod
    def _lock_active(cls, reservation_id: Any, action: str) -> Reservation:
        try:
            reservation = Reservation.objects.select_for_update().get(id=reservation_id)
        except (Reservation.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Reservation", reservation_id)
        if reservation.status != Reservation.Status.ACTIVE:
            logger.warning(f"Cannot {action} reservation {reservation.id}: status is {reservation.status}")
            raise InvalidStateError(
                f"Cannot {action} reservation {reservation.order_id}: it is {reservation.status}",
                f"reservation_{action}",
                current_state=reservation.status,
            )
        return reservation

    @classmethod
    def complete(cls, reservation_id: Any, actor: Any = None, now: datetime = None) -> Reservation:
        """
        Turn every held line into real consumption. If any line cannot be
        consumed the whole completion rolls back and the reservation stays
        active for manual resolution.
        """
        reservation = cls.get_or_404(reservation_id)
        totals, items = cls._line_totals(reservation)

        with item_locks(totals.keys()), transaction.atomic():
            reservation = cls._lock_active(reservation.id, "complete")

            now = now or timezone.now()
            if now > reservation.expires_at:
                logger.warning(f"Reservation {reservation.id} is past its expiry and cannot be completed")
                raise InvalidStateError(
                    f"Reservation {reservation.order_id} expired at "
                    f"{reservation.expires_at.isoformat()} and cannot be completed",
                    "reservation_overdue",
                    current_state=reservation.status,
                )

            reference = f"reservation:{reservation.id}"
            try:
                for line in reservation.lines.order_by("position", "id"):
                    BatchLedgerService.consume(line.item_id, line.quantity, actor, reference=reference)
            except ServiceError as e:
                logger.warning(
                    f"Completion of reservation {reservation.id} failed, left active: {e.message}"
                )
                raise

            reservation.status = Reservation.Status.COMPLETED
            reservation.resolved_at = now
            reservation.save(update_fields=["status", "resolved_at", "updated_at"])

            for item_id in sorted(totals):
                AuditService.record(
                    AuditAction.RESERVATION_COMPLETED, item_id, actor,
                    reservation_id=reservation.id,
                    order_id=reservation.order_id,
                    quantity=str(totals[item_id]),
                )
            publish(EventName.RESERVATION_COMPLETED, cls._event_payload(reservation, totals, items, actor))

        logger.info(f"Reservation {reservation.id} completed for order {reservation.order_id}")
        return reservation

    @classmethod
    def release(cls, reservation_id: Any, reason: str = "", actor: Any = None) -> Reservation:
        reservation = cls.get_or_404(reservation_id)
        totals, items = cls._line_totals(reservation)

        with item_locks(totals.keys()), transaction.atomic():
            reservation = cls._lock_active(reservation.id, "release")

            reservation.status = Reservation.Status.RELEASED
            reservation.release_reason = reason or ""
            reservation.resolved_at = timezone.now()
            reservation.save(update_fields=["status", "release_reason", "resolved_at", "updated_at"])

            for item_id in sorted(totals):
                AuditService.record(
                    AuditAction.RESERVATION_RELEASED, item_id, actor,
                    reservation_id=reservation.id,
                    order_id=reservation.order_id,
                    quantity=str(totals[item_id]),
                    reason=reason,
                )
            publish(EventName.RESERVATION_RELEASED, cls._event_payload(
                reservation, totals, items, actor, reason=reason
            ))

        logger.info(f"Reservation {reservation.id} released: {reason or 'no reason given'}")
        return reservation

    @classmethod
    def expire(cls, reservation_id: Any, now: datetime = None, actor: Any = "sweeper") -> Reservation:
        """Sweeper-only transition, valid once expires_at has passed."""
        reservation = cls.get_or_404(reservation_id)
        totals, items = cls._line_totals(reservation)

        with item_locks(totals.keys()), transaction.atomic():
            reservation = cls._lock_active(reservation.id, "expire")

            now = now or timezone.now()
            if now <= reservation.expires_at:
                raise InvalidStateError(
                    f"Reservation {reservation.order_id} is not due until "
                    f"{reservation.expires_at.isoformat()}",
                    "reservation_not_due",
                    current_state=reservation.status,
                )

            reservation.status = Reservation.Status.EXPIRED
            reservation.resolved_at = now
            reservation.save(update_fields=["status", "resolved_at", "updated_at"])

            for item_id in sorted(totals):
                AuditService.record(
                    AuditAction.RESERVATION_EXPIRED, item_id, actor,
                    reservation_id=reservation.id,
                    order_id=reservation.order_id,
                    quantity=str(totals[item_id]),
                )
            publish(EventName.RESERVATION_EXPIRED, cls._event_payload(reservation, totals, items, actor))

        logger.info(f"Reservation {reservation.id} for order {reservation.order_id} expired")
        return reservation

    @classmethod
    def expire_overdue(cls, now: datetime = None) -> Dict[str, Any]:
        """Expire every overdue reservation. One failure does not stop the rest."""
        now = now or timezone.now()
        expired = []
        failed = []

        for reservation in cls.overdue(now):
            try:
                cls.expire(reservation.id, now=now)
                expired.append(reservation.id)
            except ServiceError as e:
                logger.error(f"Failed to expire reservation {reservation.id}: {e.message}")
                failed.append({"reservation_id": reservation.id, "code": e.code, "error": e.message})

        if expired or failed:
            logger.info(f"Expired {len(expired)} reservation(s), {len(failed)} failure(s)")
        return {"expired": expired, "failed": failed}

    @classmethod
    def extend(cls, reservation_id: Any, minutes: Any, actor: Any = None,
               reason: str = "", now: datetime = None) -> Reservation:
        if isinstance(minutes, bool):
            raise ValidationError("minutes must be a positive number", "minutes")
        minutes = parse_quantity(minutes, "minutes")
        reservation = cls.get_or_404(reservation_id)
        totals, _ = cls._line_totals(reservation)

        with item_locks(totals.keys()), transaction.atomic():
            reservation = cls._lock_active(reservation.id, "extend")

            now = now or timezone.now()
            if now > reservation.expires_at:
                raise InvalidStateError(
                    f"Reservation {reservation.order_id} is already past its expiry",
                    "reservation_overdue",
                    current_state=reservation.status,
                )

            if reservation.original_expires_at is None:
                reservation.original_expires_at = reservation.expires_at
            reservation.expires_at = reservation.expires_at + timedelta(minutes=float(minutes))
            reservation.extended_by = str(actor) if actor is not None else ""
            reservation.extended_at = now
            reservation.extension_reason = reason or ""
            reservation.save(update_fields=[
                "original_expires_at", "expires_at", "extended_by",
                "extended_at", "extension_reason", "updated_at",
            ])

            for item_id in sorted(totals):
                AuditService.record(
                    AuditAction.RESERVATION_EXTENDED, item_id, actor,
                    reservation_id=reservation.id,
                    order_id=reservation.order_id,
                    minutes=str(minutes),
                    expires_at=reservation.expires_at.isoformat(),
                    reason=reason,
                )

        logger.info(f"Reservation {reservation.id} extended by {minutes} min to {reservation.expires_at.isoformat()}")
        return reservation

    # ==================== DIRECT CONSUMPTION ====================

    @classmethod
    def consume_unreserved(cls, item_id: Any, quantity: Any, actor: Any = None,
                           reference: str = None) -> InventoryItem:
        """Consume outside any reservation without eating into active holds."""
        item = BatchLedgerService.get_item(item_id)
        with item_lock(item.id):
            protected = cls.reserved_quantity(item.id)
            return BatchLedgerService.consume(
                item.id, quantity, actor,
                protected_quantity=max(protected, Decimal("0")),
                reference=reference,
            )
