from django.contrib import admin
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _
from django.urls import reverse
from unfold.admin import ModelAdmin, TabularInline
from unfold.decorators import display
from unfold.contrib.filters.admin import (
    RangeDateFilter,
    RangeDateTimeFilter,
)
from .models import (
    InventoryItem, Batch, Reservation, ReservationLine,
    DaySnapshot, DailyCountEntry, AuditEntry, InventorySettings,
)


class BatchInline(TabularInline):
    model = Batch
    extra = 0
    fields = ('quantity', 'initial_quantity', 'expiration_date', 'received_at', 'is_disposed')
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


class ReservationLineInline(TabularInline):
    model = ReservationLine
    extra = 0
    fields = ('item', 'quantity', 'position')
    readonly_fields = ('item', 'quantity', 'position')
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(InventoryItem)
class InventoryItemAdmin(ModelAdmin):
    list_display = ['id', 'name', 'category', 'unit', 'quantity_display', 'status_badge', 'is_active', 'updated_at']
    list_filter = [
        'category',
        'unit',
        'is_active',
        ('created_at', RangeDateFilter),
    ]
    search_fields = ['name', 'vendor']
    list_filter_submit = True
    list_fullwidth = True
    inlines = [BatchInline]
    readonly_fields = ['uuid', 'created_at', 'updated_at']

    fieldsets = (
        (_('Basic Information'), {
            'fields': ('name', 'category', 'unit', 'vendor'),
            'classes': ['tab'],
        }),
        (_('Stock Rules'), {
            'fields': ('minimum_threshold', 'is_active'),
            'classes': ['tab'],
            'description': _('Leave the threshold empty to use the default for the unit.'),
        }),
        (_('Pricing'), {
            'fields': ('cost', 'price'),
            'classes': ['tab'],
        }),
        (_('Timestamps'), {
            'fields': ('uuid', 'created_at', 'updated_at'),
            'classes': ['tab'],
        }),
    )

    def get_readonly_fields(self, request, obj=None):
        # Batches and holds are recorded in the item's unit
        if obj is not None:
            return self.readonly_fields + ['unit']
        return self.readonly_fields

    @display(description=_("Quantity"))
    def quantity_display(self, obj):
        return f"{obj.total_quantity.normalize()} {obj.unit}"

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        colors = {
            InventoryItem.Status.IN_STOCK: 'success',
            InventoryItem.Status.LOW_STOCK: 'warning',
            InventoryItem.Status.OUT_OF_STOCK: 'danger',
        }
        status = obj.status
        return colors.get(status, 'info'), InventoryItem.Status(status).label


@admin.register(Batch)
class BatchAdmin(ModelAdmin):
    list_display = ['id', 'item_link', 'quantity', 'initial_quantity', 'expiration_date', 'disposed_badge', 'received_at']
    list_filter = [
        'is_disposed',
        ('expiration_date', RangeDateTimeFilter),
        ('received_at', RangeDateTimeFilter),
    ]
    search_fields = ['item__name', 'disposal_reason']
    list_filter_submit = True
    # Quantities change only through the ledger services
    readonly_fields = [
        'uuid', 'item', 'quantity', 'initial_quantity', 'expiration_date', 'received_at',
        'is_disposed', 'disposed_at', 'disposal_reason', 'created_at', 'updated_at',
    ]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @display(description=_("Item"))
    def item_link(self, obj):
        url = reverse('admin:inventory_inventoryitem_change', args=[obj.item_id])
        return format_html('<a href="{}">{}</a>', url, obj.item.name)

    @display(description=_("Disposed"), label=True)
    def disposed_badge(self, obj):
        if obj.is_disposed:
            return 'danger', _("Disposed")
        return 'success', _("Live")


@admin.register(Reservation)
class ReservationAdmin(ModelAdmin):
    list_display = ['id', 'order_id', 'status_badge', 'expires_at', 'manager_override', 'created_by', 'created_at']
    list_filter = [
        'status',
        'manager_override',
        ('created_at', RangeDateTimeFilter),
    ]
    search_fields = ['order_id', 'created_by', 'notes']
    list_filter_submit = True
    list_fullwidth = True
    inlines = [ReservationLineInline]
    readonly_fields = [
        'uuid', 'order_id', 'status', 'expires_at', 'original_expires_at',
        'manager_override', 'override_reason', 'created_by', 'release_reason',
        'resolved_at', 'extended_by', 'extended_at', 'extension_reason',
        'created_at', 'updated_at',
    ]

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        colors = {
            'active': 'info',
            'completed': 'success',
            'released': 'warning',
            'expired': 'danger',
        }
        return colors.get(obj.status, 'info'), obj.get_status_display()

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(DaySnapshot)
class DaySnapshotAdmin(ModelAdmin):
    list_display = ['id', 'item', 'batch', 'business_date', 'quantity', 'taken_by', 'taken_at']
    list_filter = [
        ('business_date', RangeDateFilter),
    ]
    search_fields = ['item__name', 'taken_by']
    list_filter_submit = True

    def has_add_permission(self, request):
        return False


@admin.register(DailyCountEntry)
class DailyCountEntryAdmin(ModelAdmin):
    list_display = ['id', 'item', 'batch', 'business_date', 'system_quantity', 'counted_quantity', 'variance', 'counted_by']
    list_filter = [
        ('business_date', RangeDateFilter),
    ]
    search_fields = ['item__name', 'counted_by']
    list_filter_submit = True

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(AuditEntry)
class AuditEntryAdmin(ModelAdmin):
    list_display = ['id', 'action', 'item_id', 'actor', 'timestamp']
    list_filter = [
        'action',
        ('timestamp', RangeDateTimeFilter),
    ]
    search_fields = ['action', 'actor']
    list_filter_submit = True
    readonly_fields = ['action', 'item_id', 'actor', 'timestamp', 'details']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(InventorySettings)
class InventorySettingsAdmin(ModelAdmin):
    list_display = ['id', 'default_reservation_ttl_minutes', 'low_stock_alert_enabled', 'expiry_alert_enabled', 'updated_at']

    fieldsets = (
        (_('Reservations'), {
            'fields': ('default_reservation_ttl_minutes', 'reservation_warning_minutes'),
        }),
        (_('Alerts'), {
            'fields': ('low_stock_alert_enabled', 'expiry_alert_enabled', 'expiry_lookahead_days'),
        }),
        (_('Default Thresholds'), {
            'fields': (
                'default_threshold_pieces', 'default_threshold_grams', 'default_threshold_kilograms',
                'default_threshold_milliliters', 'default_threshold_liters',
            ),
        }),
    )

    def has_add_permission(self, request):
        return not InventorySettings.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False
