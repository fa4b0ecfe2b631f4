from datetime import datetime, date, timedelta, timezone as dt_timezone
from decimal import Decimal

from django.test import TestCase, override_settings
from django.utils import timezone

from inventory.models import Batch, AuditEntry
from inventory.services.base_service import (
    ValidationError, NotFoundError, InvalidStateError, InsufficientStockError,
    normalize_expiration,
)
from inventory.services.batch_service import BatchLedgerService
from inventory.services.audit_service import AuditAction
from inventory.services.event_service import LocalEventBus, EventName
from inventory.tests.utils import make_item, days_from_now


class NormalizeExpirationTests(TestCase):

    def test_date_is_midnight_utc_plus_8(self):
        result = normalize_expiration(date(2025, 1, 10))
        self.assertEqual(result.utcoffset(), timedelta(hours=8))
        self.assertEqual((result.hour, result.minute), (0, 0))
        self.assertEqual(result.date(), date(2025, 1, 10))

    def test_aware_datetime_uses_business_day(self):
        # 20:00 UTC on Jan 9 is already Jan 10 in UTC+8
        result = normalize_expiration(datetime(2025, 1, 9, 20, 0, tzinfo=dt_timezone.utc))
        self.assertEqual(result.date(), date(2025, 1, 10))

    def test_iso_string(self):
        self.assertEqual(normalize_expiration("2025-01-10").date(), date(2025, 1, 10))

    def test_invalid_string(self):
        with self.assertRaises(ValidationError):
            normalize_expiration("next tuesday")

    @override_settings(INVENTORY_BUSINESS_UTC_OFFSET_HOURS=0)
    def test_offset_is_configurable(self):
        self.assertEqual(normalize_expiration(date(2025, 1, 10)).utcoffset(), timedelta(0))


class RestockTests(TestCase):

    def test_restock_appends_batch(self):
        item = make_item(batches=[(1, 5)])
        batch = BatchLedgerService.restock(item.id, "2.5", days_from_now(10), actor="kim")

        self.assertEqual(batch.quantity, Decimal("2.5"))
        self.assertEqual(batch.initial_quantity, Decimal("2.5"))
        self.assertEqual(BatchLedgerService.available_quantity(item.id), Decimal("3.5"))
        self.assertTrue(AuditEntry.objects.filter(action=AuditAction.RESTOCK, item_id=item.id, actor="kim").exists())

    def test_restock_rejects_non_positive(self):
        item = make_item()
        for bad in (0, "-1", None, "abc", "NaN"):
            with self.assertRaises(ValidationError):
                BatchLedgerService.restock(item.id, bad, days_from_now(10))
        self.assertEqual(Batch.objects.filter(item=item).count(), 0)

    def test_restock_unknown_item(self):
        with self.assertRaises(NotFoundError):
            BatchLedgerService.restock(99999, 1, days_from_now(10))

    def test_restock_rejects_sub_column_precision(self):
        item = make_item()
        for bad in ("0.00001", "1.23456", "1e-5", "100000000000"):
            with self.assertRaises(ValidationError):
                BatchLedgerService.restock(item.id, bad, days_from_now(10))
        self.assertEqual(Batch.objects.filter(item=item).count(), 0)

        batch = BatchLedgerService.restock(item.id, "1.50000", days_from_now(10))
        batch.refresh_from_db()
        self.assertEqual(batch.quantity, Decimal("1.5"))
        self.assertEqual(BatchLedgerService.available_quantity(item.id), batch.quantity)


class ConsumeTests(TestCase):

    def test_fifo_by_expiration(self):
        item = make_item(batches=[(3, 20), (2, 10)])
        late, early = BatchLedgerService.list_batches(item.id)[::-1]

        BatchLedgerService.consume(item.id, 3)

        early.refresh_from_db()
        late.refresh_from_db()
        self.assertEqual(early.quantity, Decimal("0"))
        self.assertEqual(late.quantity, Decimal("2"))
        self.assertEqual(BatchLedgerService.available_quantity(item.id), Decimal("2"))

    def test_insufficient_stock_changes_nothing(self):
        item = make_item(batches=[(2, 10), (3, 20)])
        before = list(Batch.objects.filter(item=item).order_by("id").values_list("quantity", flat=True))

        with self.assertRaises(InsufficientStockError) as ctx:
            BatchLedgerService.consume(item.id, 6)

        after = list(Batch.objects.filter(item=item).order_by("id").values_list("quantity", flat=True))
        self.assertEqual(before, after)
        self.assertEqual(Decimal(ctx.exception.details["available"]), Decimal("5"))
        self.assertFalse(AuditEntry.objects.filter(action=AuditAction.CONSUME).exists())

    def test_protected_quantity_is_not_consumed(self):
        item = make_item(batches=[(5, 10)])
        with self.assertRaises(InsufficientStockError):
            BatchLedgerService.consume(item.id, 3, protected_quantity=Decimal("3"))
        BatchLedgerService.consume(item.id, 2, protected_quantity=Decimal("3"))
        self.assertEqual(BatchLedgerService.available_quantity(item.id), Decimal("3"))

    def test_disposed_batches_are_skipped(self):
        item = make_item(batches=[(2, -3), (4, 10)])
        expired = BatchLedgerService.list_batches(item.id)[0]
        BatchLedgerService.dispose(item.id, [expired.id])

        BatchLedgerService.consume(item.id, 1)
        self.assertEqual(BatchLedgerService.available_quantity(item.id), Decimal("3"))

    def test_available_equals_batch_sum(self):
        item = make_item(batches=[(1.25, 3), (2.5, 7), (4, 9)])
        BatchLedgerService.consume(item.id, "2")
        batch_sum = sum(b.quantity for b in Batch.objects.filter(item=item, is_disposed=False))
        self.assertEqual(BatchLedgerService.available_quantity(item.id), batch_sum)
        self.assertEqual(item.total_quantity, batch_sum)


class DisposeTests(TestCase):

    def test_dispose_zeroes_and_flags(self):
        item = make_item(batches=[(2, -1), (3, 5)])
        expired = BatchLedgerService.list_batches(item.id)[0]

        with self.captureOnCommitCallbacks(execute=True):
            BatchLedgerService.dispose(item.id, [expired.id], actor="kim", reason="expired")

        expired.refresh_from_db()
        self.assertTrue(expired.is_disposed)
        self.assertEqual(expired.quantity, Decimal("0"))
        self.assertEqual(expired.disposal_reason, "expired")
        self.assertEqual(BatchLedgerService.available_quantity(item.id), Decimal("3"))

    def test_dispose_is_idempotent(self):
        item = make_item(batches=[(2, -1)])
        batch = BatchLedgerService.list_batches(item.id)[0]
        BatchLedgerService.dispose(item.id, [batch.id])
        BatchLedgerService.dispose(item.id, [batch.id])

        self.assertEqual(AuditEntry.objects.filter(action=AuditAction.DISPOSE).count(), 1)

    def test_dispose_publishes_event(self):
        received = []
        LocalEventBus.subscribe(received.append)
        self.addCleanup(LocalEventBus.unsubscribe, received.append)

        item = make_item(batches=[(2, -1)])
        batch = BatchLedgerService.list_batches(item.id)[0]
        with self.captureOnCommitCallbacks(execute=True):
            BatchLedgerService.dispose(item.id, [batch.id])

        self.assertEqual([e.name for e in received], [EventName.BATCH_DISPOSED])
        self.assertEqual(received[0].payload["batches"][0]["batch_id"], batch.id)

    def test_dispose_unknown_batch(self):
        item = make_item(batches=[(2, 1)])
        with self.assertRaises(NotFoundError):
            BatchLedgerService.dispose(item.id, [424242])

    def test_dispose_requires_ids(self):
        item = make_item(batches=[(2, 1)])
        with self.assertRaises(ValidationError):
            BatchLedgerService.dispose(item.id, [])


class ExpiredBatchTests(TestCase):

    def test_expired_batches(self):
        item = make_item(batches=[(1, -2), (1, 0), (1, 4)])
        expired = BatchLedgerService.expired_batches(item.id)
        self.assertEqual(len(expired), 1)
        self.assertLess(expired[0].expiration_date, timezone.now())


class SetBatchQuantityTests(TestCase):

    def test_overwrite_returns_delta(self):
        item = make_item(batches=[(5, 3)])
        batch = BatchLedgerService.list_batches(item.id)[0]

        delta = BatchLedgerService.set_batch_quantity(item.id, batch.id, "3.5")

        batch.refresh_from_db()
        self.assertEqual(batch.quantity, Decimal("3.5"))
        self.assertEqual(delta, Decimal("-1.5"))

    def test_negative_count_rejected(self):
        item = make_item(batches=[(5, 3)])
        batch = BatchLedgerService.list_batches(item.id)[0]
        with self.assertRaises(ValidationError):
            BatchLedgerService.set_batch_quantity(item.id, batch.id, -1)

    def test_disposed_batch_rejected(self):
        item = make_item(batches=[(5, -3)])
        batch = BatchLedgerService.list_batches(item.id)[0]
        BatchLedgerService.dispose(item.id, [batch.id])
        with self.assertRaises(InvalidStateError):
            BatchLedgerService.set_batch_quantity(item.id, batch.id, 1)
