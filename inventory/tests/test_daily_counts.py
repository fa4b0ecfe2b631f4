from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from inventory.models import DaySnapshot, DailyCountEntry
from inventory.services.base_service import ValidationError, NotFoundError, business_today
from inventory.services.batch_service import BatchLedgerService
from inventory.services.count_service import DailyCountService
from inventory.tests.utils import make_item, days_from_now


class StartDayTests(TestCase):

    def test_snapshots_every_live_batch(self):
        flour = make_item(batches=[(2, 5), (3, 10)])
        make_item(name="Milk", unit="liters", batches=[(1, 4)])

        result = DailyCountService.start_day(actor="opener")

        self.assertEqual(result["snapshot_count"], 3)
        self.assertEqual(len(DailyCountService.snapshots(flour.id)), 2)

    def test_rerun_replaces_baseline(self):
        item = make_item(batches=[(2, 5)])
        DailyCountService.start_day(item.id)
        BatchLedgerService.consume(item.id, 1)
        DailyCountService.start_day(item.id)

        snapshots = DaySnapshot.objects.filter(item=item, business_date=business_today())
        self.assertEqual(snapshots.count(), 1)
        self.assertEqual(snapshots.get().quantity, Decimal("1"))


class EndDayTests(TestCase):

    def test_variance_against_snapshot(self):
        item = make_item(batches=[(10, 5)])
        batch = BatchLedgerService.list_batches(item.id)[0]
        DailyCountService.start_day(item.id)
        BatchLedgerService.consume(item.id, 2)

        DailyCountService.end_day(item.id, [{"batch_id": batch.id, "quantity": "7"}], actor="closer")

        batch.refresh_from_db()
        entry = DailyCountEntry.objects.get(batch=batch)
        self.assertEqual(batch.quantity, Decimal("7"))
        self.assertEqual(entry.start_quantity, Decimal("10"))
        self.assertEqual(entry.system_quantity, Decimal("8"))
        self.assertEqual(entry.variance, Decimal("3"))
        self.assertEqual(entry.counted_by, "closer")

    def test_variance_without_snapshot_uses_current(self):
        item = make_item()
        batch = BatchLedgerService.append_batch(
            item, Decimal("4"), days_from_now(5), received_at=timezone.now() - timedelta(days=2)
        )
        BatchLedgerService.consume(item.id, 1)

        DailyCountService.end_day(item.id, [{"batch_id": batch.id, "quantity": 2}])

        entry = DailyCountEntry.objects.get(batch=batch)
        self.assertIsNone(entry.start_quantity)
        self.assertEqual(entry.system_quantity, Decimal("3"))
        self.assertEqual(entry.variance, Decimal("1"))

    def test_batch_received_after_start_day_counts_from_received_quantity(self):
        item = make_item(batches=[(3, 5)])
        DailyCountService.start_day(item.id)
        fresh = BatchLedgerService.restock(item.id, 10, days_from_now(20))
        BatchLedgerService.consume(item.id, 13)

        first, second = BatchLedgerService.list_batches(item.id)
        DailyCountService.end_day(item.id, [
            {"batch_id": first.id, "quantity": 0},
            {"batch_id": second.id, "quantity": 0},
        ])

        entry = DailyCountEntry.objects.get(batch=fresh)
        self.assertIsNone(entry.start_quantity)
        self.assertEqual(entry.variance, Decimal("10"))

        today = business_today()
        report = DailyCountService.usage_report(today, today)
        self.assertEqual(Decimal(report["items"][0]["usage"]), Decimal("13"))

    def test_one_bad_batch_rejects_the_item(self):
        item = make_item(batches=[(4, 5), (6, 10)])
        first, second = BatchLedgerService.list_batches(item.id)

        with self.assertRaises(ValidationError):
            DailyCountService.end_day(item.id, [
                {"batch_id": first.id, "quantity": 2},
                {"batch_id": second.id, "quantity": -1},
            ])

        first.refresh_from_db()
        self.assertEqual(first.quantity, Decimal("4"))
        self.assertFalse(DailyCountEntry.objects.exists())

    def test_batch_of_other_item(self):
        item = make_item(batches=[(4, 5)])
        other = make_item(name="Sugar", batches=[(1, 5)])
        foreign = BatchLedgerService.list_batches(other.id)[0]

        with self.assertRaises(NotFoundError):
            DailyCountService.end_day(item.id, [{"batch_id": foreign.id, "quantity": 1}])

    def test_duplicate_batch_rejected(self):
        item = make_item(batches=[(4, 5)])
        batch = BatchLedgerService.list_batches(item.id)[0]
        with self.assertRaises(ValidationError):
            DailyCountService.end_day(item.id, [
                {"batch_id": batch.id, "quantity": 1},
                {"batch_id": batch.id, "quantity": 2},
            ])


class BulkEndDayTests(TestCase):

    def test_partial_failure(self):
        flour = make_item(batches=[(4, 5)])
        milk = make_item(name="Milk", unit="liters", batches=[(2, 5)])
        flour_batch = BatchLedgerService.list_batches(flour.id)[0]
        milk_batch = BatchLedgerService.list_batches(milk.id)[0]

        result = DailyCountService.bulk_end_day([
            {"item_id": flour.id, "counted_batches": [{"batch_id": flour_batch.id, "quantity": 3}]},
            {"item_id": milk.id, "counted_batches": [{"batch_id": milk_batch.id, "quantity": -2}]},
        ])

        self.assertEqual([u["item_id"] for u in result["updated"]], [flour.id])
        self.assertEqual(len(result["failed"]), 1)
        self.assertEqual(result["failed"][0]["item_id"], milk.id)
        self.assertEqual(result["failed"][0]["code"], "VALIDATION_ERROR")

        flour_batch.refresh_from_db()
        milk_batch.refresh_from_db()
        self.assertEqual(flour_batch.quantity, Decimal("3"))
        self.assertEqual(milk_batch.quantity, Decimal("2"))

    def test_missing_item_id_is_reported(self):
        result = DailyCountService.bulk_end_day([{"counted_batches": []}])
        self.assertEqual(result["updated"], [])
        self.assertEqual(result["failed"][0]["item_id"], None)

    def test_entries_must_be_a_list(self):
        with self.assertRaises(ValidationError):
            DailyCountService.bulk_end_day("nope")


class UsageReportTests(TestCase):

    def test_usage_sums_variance(self):
        item = make_item(batches=[(10, 5)])
        batch = BatchLedgerService.list_batches(item.id)[0]
        DailyCountService.end_day(item.id, [{"batch_id": batch.id, "quantity": 8}])

        today = business_today()
        report = DailyCountService.usage_report(today - timedelta(days=1), today.isoformat())

        self.assertEqual(len(report["items"]), 1)
        self.assertEqual(Decimal(report["items"][0]["usage"]), Decimal("2"))
        self.assertEqual(report["items"][0]["days_counted"], 1)

    def test_invalid_range(self):
        today = business_today()
        with self.assertRaises(ValidationError):
            DailyCountService.usage_report(today, today - timedelta(days=1))
        with self.assertRaises(ValidationError):
            DailyCountService.usage_report("yesterday-ish", today)
