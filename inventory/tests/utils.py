from datetime import timedelta
from decimal import Decimal

from django.utils import timezone

from inventory.models import InventoryItem
from inventory.services.batch_service import BatchLedgerService
from inventory.services.base_service import normalize_expiration


def days_from_now(days: int):
    return normalize_expiration(timezone.now() + timedelta(days=days))


def make_item(name="Flour", unit=InventoryItem.Unit.KILOGRAMS, batches=(), minimum_threshold=None,
              category=InventoryItem.Category.INGREDIENTS):
    """Item with one batch per (quantity, days_until_expiry) pair."""
    item = InventoryItem.objects.create(
        name=name,
        category=category,
        unit=unit,
        minimum_threshold=Decimal(str(minimum_threshold)) if minimum_threshold is not None else None,
    )
    for quantity, days in batches:
        BatchLedgerService.append_batch(item, Decimal(str(quantity)), days_from_now(days))
    return item
