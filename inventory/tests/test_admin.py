from django.contrib.admin.sites import site
from django.contrib.auth import get_user_model
from django.test import RequestFactory, TestCase

from inventory.models import Batch, Reservation, AuditEntry
from inventory.services.batch_service import BatchLedgerService
from inventory.services.reservation_service import ReservationService
from inventory.tests.utils import make_item


class LedgerAdminPermissionTests(TestCase):

    def setUp(self):
        self.request = RequestFactory().get("/admin/")
        self.request.user = get_user_model().objects.create_superuser("owner", "owner@cafe.local", "secret")

    def test_ledger_rows_cannot_be_added_or_deleted(self):
        item = make_item(batches=[(5, 10)])
        batch = BatchLedgerService.list_batches(item.id)[0]
        reservation = ReservationService.reserve("ORD-1", [{"item_id": item.id, "quantity": 1}])

        for model, obj in ((Batch, batch), (Reservation, reservation), (AuditEntry, None)):
            model_admin = site._registry[model]
            self.assertFalse(model_admin.has_add_permission(self.request))
            self.assertFalse(model_admin.has_delete_permission(self.request))
            if obj is not None:
                self.assertFalse(model_admin.has_delete_permission(self.request, obj))
