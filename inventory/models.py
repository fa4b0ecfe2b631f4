import uuid as uuid_lib
from decimal import Decimal

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import Sum


class InventoryItem(models.Model):
    class Category(models.TextChoices):
        FOOD = "Food", "Food"
        BEVERAGES = "Beverages", "Beverages"
        INGREDIENTS = "Ingredients", "Ingredients"
        PACKAGING = "Packaging", "Packaging"

    class Unit(models.TextChoices):
        PIECES = "pieces", "Pieces"
        GRAMS = "grams", "Grams"
        KILOGRAMS = "kilograms", "Kilograms"
        MILLILITERS = "milliliters", "Milliliters"
        LITERS = "liters", "Liters"

    class Status(models.TextChoices):
        IN_STOCK = "InStock", "In Stock"
        LOW_STOCK = "LowStock", "Low Stock"
        OUT_OF_STOCK = "OutOfStock", "Out of Stock"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    name = models.CharField(max_length=200)
    category = models.CharField(max_length=20, choices=Category.choices)
    unit = models.CharField(max_length=20, choices=Unit.choices)

    # Null means the per-unit default from InventorySettings applies
    minimum_threshold = models.DecimalField(
        max_digits=15, decimal_places=4, null=True, blank=True
    )
    cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    price = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    vendor = models.CharField(max_length=200, blank=True, default="")

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.unit})"

    @property
    def is_count_based(self) -> bool:
        return self.unit == self.Unit.PIECES

    @property
    def total_quantity(self) -> Decimal:
        total = self.batches.filter(is_disposed=False).aggregate(
            total=Sum("quantity")
        )["total"]
        return total or Decimal("0")

    def effective_threshold(self, settings=None) -> Decimal:
        if self.minimum_threshold is not None:
            return self.minimum_threshold
        settings = settings or InventorySettings.load()
        return settings.default_threshold_for(self.unit)

    def compute_status(self, total: Decimal = None, settings=None) -> str:
        total = self.total_quantity if total is None else total
        if total <= 0:
            return self.Status.OUT_OF_STOCK
        if total <= self.effective_threshold(settings):
            return self.Status.LOW_STOCK
        return self.Status.IN_STOCK

    @property
    def status(self) -> str:
        return self.compute_status()


class Batch(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    item = models.ForeignKey(
        InventoryItem, on_delete=models.CASCADE, related_name="batches"
    )
    initial_quantity = models.DecimalField(max_digits=15, decimal_places=4)
    quantity = models.DecimalField(max_digits=15, decimal_places=4)

    # Midnight in the business timezone, see normalize_expiration()
    expiration_date = models.DateTimeField(db_index=True)
    received_at = models.DateTimeField()

    is_disposed = models.BooleanField(default=False)
    disposed_at = models.DateTimeField(null=True, blank=True)
    disposal_reason = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["expiration_date", "received_at", "id"]
        verbose_name_plural = "batches"

    def __str__(self):
        return f"Batch #{self.id} - {self.item.name} ({self.quantity})"


class Reservation(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        COMPLETED = "completed", "Completed"
        RELEASED = "released", "Released"
        EXPIRED = "expired", "Expired"

    TERMINAL_STATUSES = (Status.COMPLETED, Status.RELEASED, Status.EXPIRED)

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    order_id = models.CharField(max_length=100, unique=True)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.ACTIVE, db_index=True
    )

    expires_at = models.DateTimeField(db_index=True)
    original_expires_at = models.DateTimeField(null=True, blank=True)

    manager_override = models.BooleanField(default=False)
    override_reason = models.CharField(max_length=255, blank=True, default="")

    created_by = models.CharField(max_length=100, blank=True, default="")
    notes = models.TextField(blank=True, default="")
    release_reason = models.CharField(max_length=255, blank=True, default="")
    resolved_at = models.DateTimeField(null=True, blank=True)

    extended_by = models.CharField(max_length=100, blank=True, default="")
    extended_at = models.DateTimeField(null=True, blank=True)
    extension_reason = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Reservation {self.order_id} ({self.status})"

    @property
    def is_active(self) -> bool:
        return self.status == self.Status.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES


class ReservationLine(models.Model):
    reservation = models.ForeignKey(
        Reservation, on_delete=models.CASCADE, related_name="lines"
    )
    item = models.ForeignKey(
        InventoryItem, on_delete=models.PROTECT, related_name="reservation_lines"
    )
    # Always in the item's native unit
    quantity = models.DecimalField(max_digits=15, decimal_places=4)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position", "id"]

    def __str__(self):
        return f"{self.item.name} x {self.quantity}"


class DaySnapshot(models.Model):
    """Start-of-day baseline for one batch."""

    item = models.ForeignKey(
        InventoryItem, on_delete=models.CASCADE, related_name="day_snapshots"
    )
    batch = models.ForeignKey(
        Batch, on_delete=models.CASCADE, related_name="day_snapshots"
    )
    business_date = models.DateField(db_index=True)
    quantity = models.DecimalField(max_digits=15, decimal_places=4)
    taken_by = models.CharField(max_length=100, blank=True, default="")
    taken_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [("batch", "business_date")]
        ordering = ["-business_date", "item", "batch"]

    def __str__(self):
        return f"{self.item.name} / batch {self.batch_id} @ {self.business_date}"


class DailyCountEntry(models.Model):
    item = models.ForeignKey(
        InventoryItem, on_delete=models.CASCADE, related_name="count_entries"
    )
    batch = models.ForeignKey(
        Batch, on_delete=models.CASCADE, related_name="count_entries"
    )
    business_date = models.DateField(db_index=True)

    start_quantity = models.DecimalField(
        max_digits=15, decimal_places=4, null=True, blank=True
    )
    system_quantity = models.DecimalField(max_digits=15, decimal_places=4)
    counted_quantity = models.DecimalField(max_digits=15, decimal_places=4)
    variance = models.DecimalField(max_digits=15, decimal_places=4)

    counted_by = models.CharField(max_length=100, blank=True, default="")
    counted_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-counted_at"]
        verbose_name_plural = "daily count entries"

    def __str__(self):
        return f"{self.item.name} count {self.business_date}: {self.counted_quantity}"


class AuditEntry(models.Model):
    action = models.CharField(max_length=50, db_index=True)
    item_id = models.BigIntegerField(null=True, blank=True, db_index=True)
    actor = models.CharField(max_length=100, blank=True, default="")
    timestamp = models.DateTimeField(db_index=True)
    details = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        ordering = ["-timestamp", "-id"]
        verbose_name_plural = "audit entries"

    def __str__(self):
        return f"{self.action} item={self.item_id} by {self.actor or 'system'}"


class InventorySettings(models.Model):
    """
    Singleton settings table. Use InventorySettings.load() to get the instance.
    """

    # Reservations
    default_reservation_ttl_minutes = models.PositiveIntegerField(default=15)
    reservation_warning_minutes = models.PositiveIntegerField(default=5)

    # Alerts
    low_stock_alert_enabled = models.BooleanField(default=True)
    expiry_alert_enabled = models.BooleanField(default=True)
    expiry_lookahead_days = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Only report batches expiring within this many days. Empty reports every batch.",
    )

    # Default minimum thresholds, used when an item has none of its own
    default_threshold_pieces = models.DecimalField(
        max_digits=15, decimal_places=4, default=Decimal("5")
    )
    default_threshold_grams = models.DecimalField(
        max_digits=15, decimal_places=4, default=Decimal("500")
    )
    default_threshold_kilograms = models.DecimalField(
        max_digits=15, decimal_places=4, default=Decimal("0.5")
    )
    default_threshold_milliliters = models.DecimalField(
        max_digits=15, decimal_places=4, default=Decimal("500")
    )
    default_threshold_liters = models.DecimalField(
        max_digits=15, decimal_places=4, default=Decimal("0.5")
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "inventory settings"
        verbose_name_plural = "inventory settings"

    def save(self, *args, **kwargs):
        # Enforce singleton: always use pk=1
        self.pk = 1
        super().save(*args, **kwargs)

    @classmethod
    def load(cls):
        obj, _ = cls.objects.get_or_create(pk=1)
        return obj

    def default_threshold_for(self, unit: str) -> Decimal:
        return getattr(self, f"default_threshold_{unit}", Decimal("0"))

    def __str__(self):
        return "Inventory Settings"
