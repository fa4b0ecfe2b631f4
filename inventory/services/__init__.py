"""
Inventory Services - batch ledger, reservations, alerts and daily counts

Usage:
    from inventory.services import InventoryItemService, ReservationService

    # Create item with its first batch
    item = InventoryItemService.create(name="Flour", category="Ingredients", unit="kilograms",
                                       initial_quantity="10", expiration_date="2026-12-31")

    # Hold stock for an order, then deduct it
    reservation = ReservationService.reserve("ORD-1", [{"item_id": item.id, "quantity": "2"}])
    ReservationService.complete(reservation.id)
"""

# Base utilities
from inventory.services.base_service import (
    ServiceError,
    ValidationError,
    NotFoundError,
    BusinessRuleError,
    InvalidStateError,
    InsufficientStockError,
    ConversionError,
    IncompatibleUnitsError,
    success_response,
    paginate_queryset,
    parse_quantity,
    check_ledger_precision,
    business_today,
    normalize_expiration,
    get_date_range,
    BaseService,
)

# Cross-cutting
from .locks import ItemLockRegistry, item_lock, item_locks
from .audit_service import AuditService, AuditAction, DatabaseAuditSink, LoggingAuditSink
from .event_service import EventName, DomainEvent, LocalEventBus, publish, WebhookEventSubscriber

# Settings & units
from .settings_service import InventorySettingsService
from .unit_service import UnitConverter

# Stock
from .batch_service import BatchLedgerService
from .item_service import InventoryItemService
from .alert_service import AlertEngine, Alert, AlertType, Severity, diff_alerts, sort_by_priority

# Orders & counts
from .reservation_service import ReservationService
from .count_service import DailyCountService

# Background
from .sweeper_service import ExpirySweeper, SweepResult, get_expiry_sweeper


__all__ = [
    # Base
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "BusinessRuleError",
    "InvalidStateError",
    "InsufficientStockError",
    "ConversionError",
    "IncompatibleUnitsError",
    "success_response",
    "paginate_queryset",
    "parse_quantity",
    "check_ledger_precision",
    "business_today",
    "normalize_expiration",
    "get_date_range",
    "BaseService",

    # Cross-cutting
    "ItemLockRegistry",
    "item_lock",
    "item_locks",
    "AuditService",
    "AuditAction",
    "DatabaseAuditSink",
    "LoggingAuditSink",
    "EventName",
    "DomainEvent",
    "LocalEventBus",
    "publish",
    "WebhookEventSubscriber",

    # Settings & units
    "InventorySettingsService",
    "UnitConverter",

    # Stock
    "BatchLedgerService",
    "InventoryItemService",
    "AlertEngine",
    "Alert",
    "AlertType",
    "Severity",
    "diff_alerts",
    "sort_by_priority",

    # Orders & counts
    "ReservationService",
    "DailyCountService",

    # Background
    "ExpirySweeper",
    "SweepResult",
    "get_expiry_sweeper",
]
