from django.urls import path
from . import views

app_name = "inventory"

urlpatterns = [
    path("settings/", views.InventorySettingsView.as_view(), name="settings"),

    path("units/convert/", views.UnitConvertView.as_view(), name="unit-convert"),

    path("items/", views.ItemListView.as_view(), name="item-list"),
    path("items/<int:item_id>/", views.ItemDetailView.as_view(), name="item-detail"),
    path("items/<int:item_id>/restock/", views.ItemRestockView.as_view(), name="item-restock"),
    path("items/<int:item_id>/consume/", views.ItemConsumeView.as_view(), name="item-consume"),
    path("items/<int:item_id>/dispose/", views.ItemDisposeView.as_view(), name="item-dispose"),
    path("items/<int:item_id>/batches/", views.ItemBatchListView.as_view(), name="item-batches"),
    path("items/<int:item_id>/end-day/", views.EndDayView.as_view(), name="item-end-day"),

    path("batches/expired/", views.ExpiredBatchListView.as_view(), name="batch-expired"),
    path("batches/<int:batch_id>/", views.BatchDetailView.as_view(), name="batch-detail"),

    path("alerts/", views.AlertListView.as_view(), name="alert-list"),

    path("reservations/", views.ReservationListView.as_view(), name="reservation-list"),
    path("reservations/summary/", views.ReservationSummaryView.as_view(), name="reservation-summary"),
    path("reservations/expiring/", views.ReservationExpiringView.as_view(), name="reservation-expiring"),
    path("reservations/<int:reservation_id>/", views.ReservationDetailView.as_view(), name="reservation-detail"),
    path("reservations/<int:reservation_id>/complete/", views.ReservationCompleteView.as_view(), name="reservation-complete"),
    path("reservations/<int:reservation_id>/release/", views.ReservationReleaseView.as_view(), name="reservation-release"),
    path("reservations/<int:reservation_id>/extend/", views.ReservationExtendView.as_view(), name="reservation-extend"),

    path("counts/start-day/", views.StartDayView.as_view(), name="count-start-day"),
    path("counts/end-day/", views.BulkEndDayView.as_view(), name="count-bulk-end-day"),
    path("counts/entries/", views.CountEntryListView.as_view(), name="count-entries"),
    path("counts/usage/", views.UsageReportView.as_view(), name="count-usage"),

    path("audit/", views.AuditLogView.as_view(), name="audit-list"),
    path("sweeper/run/", views.SweepRunView.as_view(), name="sweeper-run"),
]
