from typing import Dict, Any, Optional, List, Tuple, Union
from decimal import Decimal, InvalidOperation
from datetime import datetime, date, time, timedelta, timezone as dt_timezone
from django.conf import settings
from django.db.models import Model
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime


class ServiceError(Exception):
    def __init__(self, message: str, code: str = "ERROR", details: Dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ValidationError(ServiceError):
    def __init__(self, message: str, field: str = None, details: Dict = None):
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field


class NotFoundError(ServiceError):
    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} not found: {identifier}",
            "NOT_FOUND",
            {"resource": resource, "identifier": str(identifier)}
        )


class BusinessRuleError(ServiceError):
    def __init__(self, message: str, rule: str = None):
        super().__init__(message, "BUSINESS_RULE_VIOLATION", {"rule": rule})


class InvalidStateError(BusinessRuleError):
    """Operation not allowed in the current state (reservation status, item in use)."""

    def __init__(self, message: str, rule: str = None, current_state: str = None):
        super().__init__(message, rule)
        self.code = "INVALID_STATE"
        if current_state is not None:
            self.details["current_state"] = current_state


class InsufficientStockError(ServiceError):
    def __init__(self, item_name: str, required: Decimal, available: Decimal, item_id: int = None):
        super().__init__(
            f"Insufficient stock for {item_name}: required {required}, available {available}",
            "INSUFFICIENT_STOCK",
            {"item": item_name, "item_id": item_id, "required": str(required), "available": str(available)}
        )


class ConversionError(ServiceError):
    def __init__(self, message: str, from_unit: str = None, to_unit: str = None, code: str = "CONVERSION_ERROR"):
        super().__init__(message, code, {"from_unit": from_unit, "to_unit": to_unit})


class IncompatibleUnitsError(ConversionError):
    def __init__(self, from_unit: str, to_unit: str):
        super().__init__(
            f"Cannot convert {from_unit} to {to_unit}: incompatible units",
            from_unit, to_unit, "INCOMPATIBLE_UNITS"
        )


def success_response(data: Any = None, message: str = "Success") -> Dict:
    response = {"success": True, "message": message}
    if data is not None:
        if isinstance(data, dict):
            response.update(data)
        else:
            response["data"] = data
    return response


def paginate_queryset(queryset, page: int = 1, per_page: int = 20) -> Tuple[List, Dict]:
    page = max(1, page)
    per_page = min(max(1, per_page), 100)

    total = queryset.count()
    total_pages = (total + per_page - 1) // per_page

    offset = (page - 1) * per_page
    items = list(queryset[offset:offset + per_page])

    return items, {
        "page": page,
        "per_page": per_page,
        "total_items": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1
    }


QUANTITY_STEP = Decimal("0.0001")
QUANTITY_MAX = Decimal("99999999999.9999")


def check_ledger_precision(quantity: Decimal, field: str = "quantity") -> Decimal:
    """Reject values the quantity columns (15 digits, 4 places) would round or overflow."""
    if quantity > QUANTITY_MAX:
        raise ValidationError(f"{field} is too large", field)
    if quantity != quantity.quantize(QUANTITY_STEP):
        raise ValidationError(f"{field} allows at most 4 decimal places, got {quantity}", field)
    return quantity


def parse_quantity(value: Any, field: str = "quantity", allow_zero: bool = False) -> Decimal:
    """
    Strict quantity parsing for engine inputs.

    Nothing is coerced: missing, non-numeric, NaN/Infinity, negative,
    over-precise and (unless allow_zero) zero values raise ValidationError.
    """
    if value is None or isinstance(value, bool) or value == "":
        raise ValidationError(f"{field} is required", field)
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be a number, got {value!r}", field)

    if not quantity.is_finite():
        raise ValidationError(f"{field} must be a finite number", field)
    if quantity < 0:
        raise ValidationError(f"{field} cannot be negative", field)
    check_ledger_precision(quantity, field)
    if quantity == 0 and not allow_zero:
        raise ValidationError(f"{field} must be positive", field)
    return quantity


# ==================== BUSINESS TIMEZONE ====================

def business_timezone() -> dt_timezone:
    """Fixed-offset zone every expiration date is anchored to (default UTC+8)."""
    hours = getattr(settings, "INVENTORY_BUSINESS_UTC_OFFSET_HOURS", 8)
    return dt_timezone(timedelta(hours=hours))


def business_today(now: datetime = None) -> date:
    now = now or timezone.now()
    return now.astimezone(business_timezone()).date()


def normalize_expiration(value: Union[str, date, datetime]) -> datetime:
    """
    Anchor an expiration date to midnight in the business timezone.

    - date: midnight of that calendar day in the business zone
    - aware datetime: converted to the business zone, then truncated to its day
    - naive datetime: read as business-zone wall time, then truncated
    - str: ISO date ("2025-01-10") or datetime ("2025-01-10T15:00:00Z")
    """
    tz = business_timezone()

    if isinstance(value, str):
        raw = value.strip()
        parsed = None
        try:
            parsed = parse_datetime(raw) or parse_date(raw)
        except ValueError:
            parsed = None
        if parsed is None:
            raise ValidationError(f"Invalid expiration date: {value!r}", "expiration_date")
        value = parsed

    if isinstance(value, datetime):
        if timezone.is_aware(value):
            day = value.astimezone(tz).date()
        else:
            day = value.date()
    elif isinstance(value, date):
        day = value
    else:
        raise ValidationError(f"Invalid expiration date: {value!r}", "expiration_date")

    return datetime.combine(day, time.min, tzinfo=tz)


def parse_business_date(value: Any, field: str = "date") -> date:
    """Parse a calendar date given as date or ISO string."""
    if isinstance(value, datetime):
        return business_today(value) if timezone.is_aware(value) else value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_date(value.strip())
        except ValueError:
            parsed = None
        if parsed:
            return parsed
    raise ValidationError(f"Invalid {field}: {value!r}", field)


def get_date_range(period: str, today: date = None) -> Tuple[date, date]:
    today = today or business_today()

    if period == "today":
        return today, today
    elif period == "yesterday":
        return today - timedelta(days=1), today - timedelta(days=1)
    elif period == "this_week":
        start = today - timedelta(days=today.weekday())
        return start, today
    elif period == "last_week":
        end = today - timedelta(days=today.weekday() + 1)
        start = end - timedelta(days=6)
        return start, end
    elif period == "this_month":
        return today.replace(day=1), today
    elif period == "last_month":
        first_of_month = today.replace(day=1)
        last_month_end = first_of_month - timedelta(days=1)
        last_month_start = last_month_end.replace(day=1)
        return last_month_start, last_month_end
    elif period.startswith("last_") and period.endswith("_days"):
        days_part = period.replace("last_", "").replace("_days", "")
        if days_part.isdigit():
            return today - timedelta(days=int(days_part)), today

    raise ValidationError(f"Unknown period: {period}", "period")


class BaseService:
    model = None

    @classmethod
    def get_by_id(cls, id: int) -> Optional[Model]:
        try:
            return cls.model.objects.get(id=id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            return None

    @classmethod
    def get_or_404(cls, id: int) -> Model:
        obj = cls.get_by_id(id)
        if not obj:
            raise NotFoundError(cls.model.__name__, id)
        return obj

