import json
import logging

from django.http import JsonResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator

from inventory.services import (
    ValidationError, NotFoundError, BusinessRuleError, InvalidStateError,
    InsufficientStockError, ConversionError,
    get_date_range, business_today,
    InventorySettingsService, UnitConverter, InventoryItemService,
    BatchLedgerService, AlertEngine, sort_by_priority,
    ReservationService, DailyCountService, AuditService,
    get_expiry_sweeper,
)

logger = logging.getLogger(__name__)


def error_response(message: str, code: str = "error", status: int = 400, details: dict = None):
    data = {"success": False, "error": {"code": code, "message": message}}
    if details:
        data["error"]["details"] = details
    return JsonResponse(data, status=status)


def handle_service_error(e: Exception):
    if isinstance(e, ValidationError):
        return error_response(str(e), "validation_error", 400, {"field": e.field})
    elif isinstance(e, NotFoundError):
        return error_response(str(e), "not_found", 404, e.details)
    elif isinstance(e, InsufficientStockError):
        return error_response(str(e), "insufficient_stock", 400, e.details)
    elif isinstance(e, ConversionError):
        return error_response(str(e), e.code.lower(), 400, e.details)
    elif isinstance(e, InvalidStateError):
        return error_response(str(e), "invalid_state", 409, e.details)
    elif isinstance(e, BusinessRuleError):
        return error_response(str(e), "business_rule", 400, e.details)
    else:
        logger.exception(f"Unhandled error: {e}")
        return error_response("Internal server error", "server_error", 500)


class BaseInventoryView(View):
    @method_decorator(csrf_exempt)
    def dispatch(self, request, *args, **kwargs):
        return super().dispatch(request, *args, **kwargs)

    def get_json_body(self, request):
        if not request.body:
            return {}
        try:
            data = json.loads(request.body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ValidationError("Request body is not valid JSON", "body")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object", "body")
        return data

    def get_actor(self, request, data: dict = None):
        if request.user.is_authenticated:
            return request.user.get_username()
        if data and data.get("actor"):
            return str(data["actor"])
        return request.headers.get("X-Actor")

    def get_int(self, request, name: str, default: int = None):
        value = request.GET.get(name)
        if value in (None, ""):
            return default
        try:
            return int(value)
        except ValueError:
            raise ValidationError(f"{name} must be an integer", name)

    def get_bool(self, request, name: str, default: bool = False) -> bool:
        value = request.GET.get(name)
        if value is None:
            return default
        return value.lower() in ("1", "true", "yes")

    def success(self, data: dict, status: int = 200):
        return JsonResponse({"success": True, **data}, status=status)


# ==================== SETTINGS ====================

class InventorySettingsView(BaseInventoryView):

    def get(self, request):
        try:
            result = InventorySettingsService.get_all()
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def put(self, request):
        try:
            data = self.get_json_body(request)
            actor = self.get_actor(request, data)
            data.pop("actor", None)
            result = InventorySettingsService.update(actor=actor, **data)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== UNITS ====================

class UnitConvertView(BaseInventoryView):

    def get(self, request):
        try:
            return self.success(UnitConverter.list_units())
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = UnitConverter.describe(
                data.get("value"),
                data.get("from_unit"),
                data.get("to_unit"),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== ITEMS ====================

class ItemListView(BaseInventoryView):

    def get(self, request):
        try:
            result = InventoryItemService.list(
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 20),
                search=request.GET.get("search"),
                category=request.GET.get("category"),
                status=request.GET.get("status"),
                active_only=not self.get_bool(request, "include_inactive"),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_json_body(request)
            item = InventoryItemService.create(
                name=data.get("name"),
                category=data.get("category"),
                unit=data.get("unit"),
                initial_quantity=data.get("quantity"),
                expiration_date=data.get("expiration_date"),
                minimum_threshold=data.get("minimum_threshold"),
                cost=data.get("cost"),
                price=data.get("price"),
                vendor=data.get("vendor", ""),
                actor=self.get_actor(request, data),
            )
            return self.success({
                "message": f"Item '{item.name}' created",
                "item": InventoryItemService.serialize(item, include_batches=True),
            }, 201)
        except Exception as e:
            return handle_service_error(e)


class ItemDetailView(BaseInventoryView):

    def get(self, request, item_id):
        try:
            result = InventoryItemService.get(item_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, item_id):
        try:
            data = self.get_json_body(request)
            actor = self.get_actor(request, data)
            data.pop("actor", None)
            item = InventoryItemService.update(item_id, actor=actor, **data)
            return self.success({
                "message": "Item updated",
                "item": InventoryItemService.serialize(item),
            })
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, item_id):
        try:
            result = InventoryItemService.delete(
                item_id,
                hard=self.get_bool(request, "hard"),
                actor=self.get_actor(request),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class ItemRestockView(BaseInventoryView):

    def post(self, request, item_id):
        try:
            data = self.get_json_body(request)
            batch = BatchLedgerService.restock(
                item_id,
                data.get("quantity"),
                data.get("expiration_date"),
                actor=self.get_actor(request, data),
            )
            return self.success({
                "message": "Stock added",
                "batch": BatchLedgerService.serialize(batch),
                "item": InventoryItemService.serialize(batch.item),
            }, 201)
        except Exception as e:
            return handle_service_error(e)


class ItemConsumeView(BaseInventoryView):

    def post(self, request, item_id):
        try:
            data = self.get_json_body(request)
            item = ReservationService.consume_unreserved(
                item_id,
                data.get("quantity"),
                actor=self.get_actor(request, data),
                reference=data.get("reference"),
            )
            return self.success({
                "message": "Stock consumed",
                "item": InventoryItemService.serialize(item, include_batches=True),
            })
        except Exception as e:
            return handle_service_error(e)


class ItemDisposeView(BaseInventoryView):

    def post(self, request, item_id):
        try:
            data = self.get_json_body(request)
            item = BatchLedgerService.dispose(
                item_id,
                data.get("batch_ids"),
                actor=self.get_actor(request, data),
                reason=data.get("reason", ""),
            )
            return self.success({
                "message": "Batches disposed",
                "item": InventoryItemService.serialize(item, include_batches=True),
            })
        except Exception as e:
            return handle_service_error(e)


class ItemBatchListView(BaseInventoryView):

    def get(self, request, item_id):
        try:
            batches = BatchLedgerService.list_batches(
                item_id, include_disposed=self.get_bool(request, "include_disposed")
            )
            return self.success({
                "item_id": item_id,
                "available_quantity": str(BatchLedgerService.available_quantity(item_id)),
                "batches": [BatchLedgerService.serialize(b) for b in batches],
            })
        except Exception as e:
            return handle_service_error(e)


class ExpiredBatchListView(BaseInventoryView):

    def get(self, request):
        try:
            batches = BatchLedgerService.expired_batches(self.get_int(request, "item_id"))
            return self.success({
                "count": len(batches),
                "batches": [
                    {**BatchLedgerService.serialize(b), "item_name": b.item.name, "unit": b.item.unit}
                    for b in batches
                ],
            })
        except Exception as e:
            return handle_service_error(e)


class BatchDetailView(BaseInventoryView):

    def get(self, request, batch_id):
        try:
            return self.success(BatchLedgerService.get(batch_id))
        except Exception as e:
            return handle_service_error(e)


# ==================== ALERTS ====================

class AlertListView(BaseInventoryView):

    def get(self, request):
        try:
            alert_type = request.GET.get("type")
            if alert_type not in (None, "", "stock", "expiration"):
                raise ValidationError("type must be 'stock' or 'expiration'", "type")

            alerts = AlertEngine.evaluate(
                include_stock=alert_type in (None, "", "stock"),
                include_expiration=alert_type in (None, "", "expiration"),
            )
            alerts = sort_by_priority(alerts)
            return self.success({
                "count": len(alerts),
                "summary": AlertEngine.summary(alerts),
                "alerts": [a.to_dict() for a in alerts],
            })
        except Exception as e:
            return handle_service_error(e)


# ==================== RESERVATIONS ====================

class ReservationListView(BaseInventoryView):

    def get(self, request):
        try:
            result = ReservationService.list(
                status=request.GET.get("status"),
                order_id=request.GET.get("order_id"),
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_json_body(request)
            reservation = ReservationService.reserve(
                order_id=data.get("order_id"),
                lines=data.get("lines"),
                ttl=data.get("ttl_minutes"),
                actor=self.get_actor(request, data),
                manager_override=bool(data.get("manager_override", False)),
                override_reason=data.get("override_reason", ""),
                notes=data.get("notes", ""),
            )
            return self.success({
                "message": "Stock reserved",
                "reservation": ReservationService.serialize(reservation),
            }, 201)
        except Exception as e:
            return handle_service_error(e)


class ReservationDetailView(BaseInventoryView):

    def get(self, request, reservation_id):
        try:
            return self.success(ReservationService.get(reservation_id))
        except Exception as e:
            return handle_service_error(e)


class ReservationCompleteView(BaseInventoryView):

    def post(self, request, reservation_id):
        try:
            data = self.get_json_body(request)
            reservation = ReservationService.complete(reservation_id, actor=self.get_actor(request, data))
            return self.success({
                "message": "Reservation completed",
                "reservation": ReservationService.serialize(reservation),
            })
        except Exception as e:
            return handle_service_error(e)


class ReservationReleaseView(BaseInventoryView):

    def post(self, request, reservation_id):
        try:
            data = self.get_json_body(request)
            reservation = ReservationService.release(
                reservation_id,
                reason=data.get("reason", ""),
                actor=self.get_actor(request, data),
            )
            return self.success({
                "message": "Reservation released",
                "reservation": ReservationService.serialize(reservation),
            })
        except Exception as e:
            return handle_service_error(e)


class ReservationExtendView(BaseInventoryView):

    def post(self, request, reservation_id):
        try:
            data = self.get_json_body(request)
            reservation = ReservationService.extend(
                reservation_id,
                data.get("minutes"),
                actor=self.get_actor(request, data),
                reason=data.get("reason", ""),
            )
            return self.success({
                "message": "Reservation extended",
                "reservation": ReservationService.serialize(reservation),
            })
        except Exception as e:
            return handle_service_error(e)


class ReservationSummaryView(BaseInventoryView):

    def get(self, request):
        try:
            return self.success(ReservationService.summary(self.get_int(request, "item_id")))
        except Exception as e:
            return handle_service_error(e)


class ReservationExpiringView(BaseInventoryView):

    def get(self, request):
        try:
            reservations = ReservationService.expiring_soon(self.get_int(request, "minutes"))
            return self.success({
                "count": len(reservations),
                "reservations": [ReservationService.serialize(r) for r in reservations],
            })
        except Exception as e:
            return handle_service_error(e)


# ==================== DAILY COUNTS ====================

class StartDayView(BaseInventoryView):

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = DailyCountService.start_day(
                data.get("item_id"), actor=self.get_actor(request, data)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class EndDayView(BaseInventoryView):

    def post(self, request, item_id):
        try:
            data = self.get_json_body(request)
            item = DailyCountService.end_day(
                item_id,
                data.get("counted_batches"),
                actor=self.get_actor(request, data),
            )
            entries = DailyCountService.entries(item.id, business_today())
            return self.success({
                "message": "End of day recorded",
                "item": InventoryItemService.serialize(item, include_batches=True),
                "entries": [DailyCountService.serialize(e) for e in entries],
            })
        except Exception as e:
            return handle_service_error(e)


class BulkEndDayView(BaseInventoryView):

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = DailyCountService.bulk_end_day(
                data.get("entries"), actor=self.get_actor(request, data)
            )
            status = 200 if not result["failed"] else 207
            return self.success(result, status)
        except Exception as e:
            return handle_service_error(e)


class UsageReportView(BaseInventoryView):

    def get(self, request):
        try:
            period = request.GET.get("period")
            if period:
                start_date, end_date = get_date_range(period)
            else:
                start_date = request.GET.get("start_date")
                end_date = request.GET.get("end_date")
                if not start_date or not end_date:
                    raise ValidationError("start_date and end_date (or period) are required", "start_date")

            result = DailyCountService.usage_report(
                start_date, end_date, self.get_int(request, "item_id")
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class CountEntryListView(BaseInventoryView):

    def get(self, request):
        try:
            entries = DailyCountService.entries(
                self.get_int(request, "item_id"), request.GET.get("date")
            )
            return self.success({
                "count": len(entries),
                "entries": [DailyCountService.serialize(e) for e in entries],
            })
        except Exception as e:
            return handle_service_error(e)


# ==================== AUDIT & SWEEPER ====================

class AuditLogView(BaseInventoryView):

    def get(self, request):
        try:
            result = AuditService.list(
                item_id=self.get_int(request, "item_id"),
                action=request.GET.get("action"),
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class SweepRunView(BaseInventoryView):

    def post(self, request):
        try:
            result = get_expiry_sweeper().run_once()
            return self.success(result.to_dict())
        except Exception as e:
            return handle_service_error(e)
