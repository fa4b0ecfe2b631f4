import logging
from typing import Dict, Any
from decimal import Decimal
from datetime import timedelta
from django.db import transaction

from inventory.models import InventorySettings, InventoryItem
from inventory.services.base_service import (
    BaseService, success_response,
    ValidationError, parse_quantity,
)
from inventory.services.audit_service import AuditService, AuditAction

logger = logging.getLogger(__name__)


class InventorySettingsService(BaseService):
    model = InventorySettings

    BOOLEAN_FIELDS = {"low_stock_alert_enabled", "expiry_alert_enabled"}
    POSITIVE_INT_FIELDS = {"default_reservation_ttl_minutes", "reservation_warning_minutes"}
    THRESHOLD_FIELDS = {f"default_threshold_{unit}" for unit in InventoryItem.Unit.values}

    @classmethod
    def load(cls) -> InventorySettings:
        return InventorySettings.load()

    @classmethod
    def default_reservation_ttl(cls) -> timedelta:
        return timedelta(minutes=cls.load().default_reservation_ttl_minutes)

    @classmethod
    def default_thresholds(cls) -> Dict[str, Decimal]:
        settings = cls.load()
        return {
            unit: settings.default_threshold_for(unit)
            for unit in InventoryItem.Unit.values
        }

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        settings = cls.load()

        return {
            "default_reservation_ttl_minutes": settings.default_reservation_ttl_minutes,
            "reservation_warning_minutes": settings.reservation_warning_minutes,

            "low_stock_alert_enabled": settings.low_stock_alert_enabled,
            "expiry_alert_enabled": settings.expiry_alert_enabled,
            "expiry_lookahead_days": settings.expiry_lookahead_days,

            "default_thresholds": {
                unit: str(value) for unit, value in cls.default_thresholds().items()
            },
        }

    @classmethod
    @transaction.atomic
    def update(cls, actor: Any = None, **kwargs) -> Dict[str, Any]:
        settings = cls.load()

        updated = []
        for field, value in kwargs.items():
            if field in cls.BOOLEAN_FIELDS:
                if not isinstance(value, bool):
                    raise ValidationError(f"{field} must be true or false", field)
            elif field in cls.POSITIVE_INT_FIELDS:
                if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                    raise ValidationError(f"{field} must be a positive integer", field)
            elif field == "expiry_lookahead_days":
                if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                    raise ValidationError(f"{field} must be a non-negative integer or null", field)
            elif field in cls.THRESHOLD_FIELDS:
                value = parse_quantity(value, field, allow_zero=True)
            else:
                continue

            setattr(settings, field, value)
            updated.append(field)

        if updated:
            settings.save()
            AuditService.record(
                AuditAction.SETTINGS_UPDATED, None, actor,
                fields=updated,
            )
            logger.info(f"Inventory settings updated: {', '.join(updated)}")

        return success_response({
            "updated_fields": updated,
            "settings": cls.get_all()
        }, f"Updated {len(updated)} setting(s)")
