import json
from decimal import Decimal

from django.test import TestCase
from django.urls import reverse

from inventory.models import Reservation
from inventory.services.batch_service import BatchLedgerService
from inventory.services.reservation_service import ReservationService
from inventory.tests.utils import make_item


class ApiTestCase(TestCase):

    def post(self, name, data=None, **kwargs):
        return self.client.post(
            reverse(f"inventory:{name}", kwargs=kwargs),
            data=json.dumps(data or {}),
            content_type="application/json",
        )

    def put(self, name, data=None, **kwargs):
        return self.client.put(
            reverse(f"inventory:{name}", kwargs=kwargs),
            data=json.dumps(data or {}),
            content_type="application/json",
        )

    def get(self, name, params=None, **kwargs):
        return self.client.get(reverse(f"inventory:{name}", kwargs=kwargs), params or {})


class ItemApiTests(ApiTestCase):

    def test_create_and_fetch(self):
        response = self.post("item-list", {
            "name": "Oat milk",
            "category": "Beverages",
            "unit": "liters",
            "quantity": "3",
            "expiration_date": "2099-01-01",
            "actor": "owner",
        })
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["success"])
        item_id = body["item"]["id"]

        response = self.get("item-detail", item_id=item_id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.json()["item"]["total_quantity"]), Decimal("3"))

    def test_validation_error_shape(self):
        response = self.post("item-list", {"name": "", "category": "Food", "unit": "pieces"})
        self.assertEqual(response.status_code, 400)
        error = response.json()["error"]
        self.assertEqual(error["code"], "validation_error")
        self.assertEqual(error["details"]["field"], "name")

    def test_invalid_json(self):
        response = self.client.post(
            reverse("inventory:item-list"), data="{not json", content_type="application/json"
        )
        self.assertEqual(response.status_code, 400)

    def test_not_found(self):
        response = self.get("item-detail", item_id=4242)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "not_found")

    def test_consume_respects_holds(self):
        item = make_item(batches=[(5, 10)])
        ReservationService.reserve("ORD-1", [{"item_id": item.id, "quantity": 4}])

        response = self.post("item-consume", {"quantity": 2}, item_id=item.id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "insufficient_stock")

        response = self.post("item-consume", {"quantity": 1}, item_id=item.id)
        self.assertEqual(response.status_code, 200)

    def test_restock_and_dispose(self):
        item = make_item(batches=[(2, -3)])
        expired = BatchLedgerService.list_batches(item.id)[0]

        response = self.post("item-restock", {"quantity": "1.5", "expiration_date": "2099-06-01"}, item_id=item.id)
        self.assertEqual(response.status_code, 201)

        response = self.get("batch-expired")
        self.assertEqual(response.json()["count"], 1)

        response = self.post("item-dispose", {"batch_ids": [expired.id], "reason": "expired"}, item_id=item.id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.json()["item"]["total_quantity"]), Decimal("1.5"))

    def test_batch_detail(self):
        item = make_item(batches=[(2, 5)])
        batch = BatchLedgerService.list_batches(item.id)[0]

        response = self.get("batch-detail", batch_id=batch.id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["batch"]["id"], batch.id)

        response = self.get("batch-detail", batch_id=4242)
        self.assertEqual(response.status_code, 404)

    def test_delete_with_active_hold_is_conflict(self):
        item = make_item(batches=[(5, 10)])
        ReservationService.reserve("ORD-1", [{"item_id": item.id, "quantity": 1}])

        response = self.client.delete(reverse("inventory:item-detail", kwargs={"item_id": item.id}))
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "invalid_state")


class ReservationApiTests(ApiTestCase):

    def setUp(self):
        self.item = make_item(batches=[(5, 10)])

    def test_reserve_and_complete(self):
        response = self.post("reservation-list", {
            "order_id": "ORD-9",
            "lines": [{"item_id": self.item.id, "quantity": 2}],
            "ttl_minutes": 10,
        })
        self.assertEqual(response.status_code, 201)
        reservation_id = response.json()["reservation"]["id"]

        response = self.post("reservation-complete", reservation_id=reservation_id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["reservation"]["status"], "completed")

        response = self.post("reservation-complete", reservation_id=reservation_id)
        self.assertEqual(response.status_code, 409)

    def test_shortage_lists_items(self):
        response = self.post("reservation-list", {
            "order_id": "ORD-9",
            "lines": [{"item_id": self.item.id, "quantity": 9}],
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["details"]["shortages"][0]["item_id"], self.item.id)

    def test_release_and_extend(self):
        reservation = ReservationService.reserve("ORD-1", [{"item_id": self.item.id, "quantity": 1}])

        response = self.post("reservation-extend", {"minutes": 5, "reason": "busy"}, reservation_id=reservation.id)
        self.assertEqual(response.status_code, 200)

        response = self.post("reservation-release", {"reason": "cancelled"}, reservation_id=reservation.id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Reservation.objects.get().status, Reservation.Status.RELEASED)

    def test_summary(self):
        ReservationService.reserve("ORD-1", [{"item_id": self.item.id, "quantity": 1}])
        response = self.get("reservation-summary", {"item_id": self.item.id})
        self.assertEqual(response.json()["by_status"]["active"], 1)


class OtherApiTests(ApiTestCase):

    def test_unit_convert(self):
        response = self.post("unit-convert", {"value": 1500, "from_unit": "grams", "to_unit": "kilograms"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.json()["result"]), Decimal("1.5"))

        response = self.post("unit-convert", {"value": 1, "from_unit": "pieces", "to_unit": "grams"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "incompatible_units")

    def test_alerts_sorted(self):
        make_item(name="Low", minimum_threshold="1", batches=[("0.5", 30)])
        make_item(name="Empty")

        response = self.get("alert-list")
        alerts = response.json()["alerts"]
        self.assertEqual(alerts[0]["severity"], "out")
        self.assertEqual(alerts[1]["severity"], "low")

        response = self.get("alert-list", {"type": "expiration"})
        self.assertEqual({a["type"] for a in response.json()["alerts"]}, {"expiration"})

    def test_bulk_end_day_reports_partial_failure(self):
        item = make_item(batches=[(4, 5)])
        batch = BatchLedgerService.list_batches(item.id)[0]

        response = self.post("count-bulk-end-day", {"entries": [
            {"item_id": item.id, "counted_batches": [{"batch_id": batch.id, "quantity": 3}]},
            {"item_id": 4242, "counted_batches": [{"batch_id": 1, "quantity": 1}]},
        ]})
        self.assertEqual(response.status_code, 207)
        body = response.json()
        self.assertEqual(len(body["updated"]), 1)
        self.assertEqual(body["failed"][0]["code"], "NOT_FOUND")

    def test_usage_report_period(self):
        response = self.get("count-usage", {"period": "this_week"})
        self.assertEqual(response.status_code, 200)
        response = self.get("count-usage")
        self.assertEqual(response.status_code, 400)

    def test_settings_roundtrip(self):
        response = self.put("settings", {"default_reservation_ttl_minutes": 20})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.get("settings").json()["default_reservation_ttl_minutes"], 20)

    def test_sweeper_run(self):
        response = self.post("sweeper-run")
        self.assertEqual(response.status_code, 200)
        self.assertIn("expired_reservations", response.json())
