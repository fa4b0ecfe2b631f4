import logging
from typing import Dict, Any
from decimal import Decimal
from datetime import datetime
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from inventory.models import InventoryItem, InventorySettings, ReservationLine, Reservation
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, BusinessRuleError, InvalidStateError,
    parse_quantity, normalize_expiration,
)
from inventory.services.audit_service import AuditService, AuditAction
from inventory.services.batch_service import BatchLedgerService
from inventory.services.reservation_service import ReservationService
from inventory.services.locks import item_lock

logger = logging.getLogger(__name__)


class InventoryItemService(BaseService):
    model = InventoryItem

    @classmethod
    def serialize(cls, item: InventoryItem,
                  include_batches: bool = False,
                  settings: InventorySettings = None,
                  now: datetime = None) -> Dict[str, Any]:
        settings = settings or InventorySettings.load()
        total = item.total_quantity
        reserved = ReservationService.reserved_quantity(item.id)

        data = {
            "id": item.id,
            "uuid": str(item.uuid),
            "name": item.name,
            "category": item.category,
            "unit": item.unit,
            "is_count_based": item.is_count_based,
            "minimum_threshold": str(item.minimum_threshold) if item.minimum_threshold is not None else None,
            "effective_threshold": str(item.effective_threshold(settings)),
            "cost": str(item.cost),
            "price": str(item.price),
            "vendor": item.vendor,
            "total_quantity": str(total),
            "reserved_quantity": str(reserved),
            "sellable_quantity": str(total - reserved),
            "status": item.compute_status(total, settings),
            "is_active": item.is_active,
            "created_at": item.created_at.isoformat(),
            "updated_at": item.updated_at.isoformat(),
        }

        if include_batches:
            now = now or timezone.now()
            data["batches"] = [
                BatchLedgerService.serialize(b, now)
                for b in BatchLedgerService.list_batches(item.id, include_disposed=True)
            ]

        return data

    @classmethod
    def list(cls,
             page: int = 1,
             per_page: int = 20,
             search: str = None,
             category: str = None,
             status: str = None,
             active_only: bool = True) -> Dict[str, Any]:
        queryset = cls.model.objects.all()

        if active_only:
            queryset = queryset.filter(is_active=True)

        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(vendor__icontains=search)
            )

        if category:
            valid_categories = [c[0] for c in InventoryItem.Category.choices]
            if category not in valid_categories:
                raise ValidationError(f"Invalid category. Valid: {valid_categories}", "category")
            queryset = queryset.filter(category=category)

        queryset = queryset.order_by("name", "id")
        settings = InventorySettings.load()

        if status:
            valid_statuses = [c[0] for c in InventoryItem.Status.choices]
            if status not in valid_statuses:
                raise ValidationError(f"Invalid status. Valid: {valid_statuses}", "status")
            # Status is derived, filter in Python
            matching = [i.id for i in queryset if i.compute_status(settings=settings) == status]
            queryset = queryset.filter(id__in=matching)

        items, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "items": [cls.serialize(item, settings=settings) for item in items],
            "pagination": pagination,
            "filters": {
                "categories": [{"value": c[0], "label": c[1]} for c in InventoryItem.Category.choices],
                "units": [{"value": c[0], "label": c[1]} for c in InventoryItem.Unit.choices],
                "statuses": [{"value": c[0], "label": c[1]} for c in InventoryItem.Status.choices],
            }
        })

    @classmethod
    def get(cls, item_id: Any, include_batches: bool = True) -> Dict[str, Any]:
        item = BatchLedgerService.get_item(item_id, active_only=False)
        return success_response({
            "item": cls.serialize(item, include_batches=include_batches)
        })

    @classmethod
    def _validate_choice(cls, value: Any, choices, field: str) -> str:
        valid = [c[0] for c in choices]
        if value not in valid:
            raise ValidationError(f"Invalid {field}. Valid: {valid}", field)
        return value

    @classmethod
    def _parse_money(cls, value: Any, field: str) -> Decimal:
        return parse_quantity(value, field, allow_zero=True) if value is not None else Decimal("0")

    @classmethod
    @transaction.atomic
    def create(cls,
               name: str,
               category: str,
               unit: str,
               initial_quantity: Any,
               expiration_date: Any,
               minimum_threshold: Any = None,
               cost: Any = None,
               price: Any = None,
               vendor: str = "",
               actor: Any = None) -> InventoryItem:
        """Create an item together with its first batch."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required", "name")
        category = cls._validate_choice(category, InventoryItem.Category.choices, "category")
        unit = cls._validate_choice(unit, InventoryItem.Unit.choices, "unit")

        quantity = parse_quantity(initial_quantity, "initial_quantity", allow_zero=True)
        expiration = normalize_expiration(expiration_date)
        threshold = (
            parse_quantity(minimum_threshold, "minimum_threshold", allow_zero=True)
            if minimum_threshold is not None else None
        )

        item = cls.model.objects.create(
            name=name,
            category=category,
            unit=unit,
            minimum_threshold=threshold,
            cost=cls._parse_money(cost, "cost"),
            price=cls._parse_money(price, "price"),
            vendor=vendor or "",
        )

        with item_lock(item.id):
            batch = BatchLedgerService.append_batch(item, quantity, expiration)

        AuditService.record(
            AuditAction.ITEM_CREATED, item.id, actor,
            name=name,
            unit=unit,
            batch_id=batch.id,
            quantity=str(quantity),
            expiration_date=expiration.isoformat(),
        )

        logger.info(f"Inventory item created: {item.name} ({item.id}) with {quantity} {unit}")
        return item

    @classmethod
    @transaction.atomic
    def update(cls, item_id: Any, actor: Any = None, **kwargs) -> InventoryItem:
        item = BatchLedgerService.get_item(item_id)

        if "unit" in kwargs and kwargs["unit"] != item.unit:
            raise BusinessRuleError(
                "Cannot change the unit of an existing item; batches and holds are recorded in it",
                "unit_immutable",
            )

        update_fields = ["updated_at"]
        changes = {}

        if "name" in kwargs:
            name = (kwargs["name"] or "").strip()
            if not name:
                raise ValidationError("Name is required", "name")
            item.name = name
            update_fields.append("name")

        if "category" in kwargs:
            item.category = cls._validate_choice(kwargs["category"], InventoryItem.Category.choices, "category")
            update_fields.append("category")

        if "minimum_threshold" in kwargs:
            value = kwargs["minimum_threshold"]
            item.minimum_threshold = (
                parse_quantity(value, "minimum_threshold", allow_zero=True) if value is not None else None
            )
            update_fields.append("minimum_threshold")

        for field in ["cost", "price"]:
            if field in kwargs:
                setattr(item, field, cls._parse_money(kwargs[field], field))
                update_fields.append(field)

        if "vendor" in kwargs:
            item.vendor = kwargs["vendor"] or ""
            update_fields.append("vendor")

        for field in update_fields[1:]:
            value = getattr(item, field)
            changes[field] = str(value) if isinstance(value, Decimal) else value

        item.save(update_fields=update_fields)

        if changes:
            AuditService.record(AuditAction.ITEM_UPDATED, item.id, actor, changes=changes)

        return item

    @classmethod
    def delete(cls, item_id: Any, hard: bool = False, actor: Any = None) -> Dict[str, Any]:
        """
        Soft delete (deactivate) by default. Refused while any active
        reservation holds the item.
        """
        item = BatchLedgerService.get_item(item_id, active_only=not hard)

        with item_lock(item.id), transaction.atomic():
            item = BatchLedgerService.get_item(item.id, lock=True, active_only=False)

            active_holds = ReservationLine.objects.filter(
                item=item, reservation__status=Reservation.Status.ACTIVE
            ).values("reservation_id").distinct().count()
            if active_holds:
                logger.warning(f"Refused to delete {item.name}: {active_holds} active reservation(s)")
                raise InvalidStateError(
                    f"Cannot delete {item.name}: {active_holds} active reservation(s) hold it",
                    "item_has_active_reservations",
                )

            if hard and ReservationLine.objects.filter(item=item).exists():
                raise BusinessRuleError(
                    f"Cannot hard delete {item.name}: it has reservation history. Deactivate it instead.",
                    "item_has_reservation_history",
                )

            AuditService.record(
                AuditAction.ITEM_DELETED, item.id, actor,
                name=item.name,
                hard=hard,
            )

            if hard:
                deleted_id = item.id
                item.delete()
                logger.info(f"Inventory item {deleted_id} hard deleted")
                return success_response({"id": deleted_id, "hard": True}, "Item deleted")

            item.is_active = False
            item.save(update_fields=["is_active", "updated_at"])

        logger.info(f"Inventory item {item.id} deactivated")
        return success_response({"id": item.id, "hard": False}, "Item deactivated")
