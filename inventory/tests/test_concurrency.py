import threading
from datetime import timedelta
from decimal import Decimal

from django.db import connections
from django.test import TransactionTestCase

from inventory.models import InventorySettings, Reservation
from inventory.services.base_service import InsufficientStockError
from inventory.services.batch_service import BatchLedgerService
from inventory.services.reservation_service import ReservationService
from inventory.tests.utils import make_item


class ConcurrentReserveTests(TransactionTestCase):
    """Parallel orders competing for one item on the shared test database."""

    workers = 8

    def setUp(self):
        InventorySettings.load()
        self.item = make_item(batches=[(10, 10)])

    def run_in_threads(self, target):
        barrier = threading.Barrier(self.workers)
        results = []
        guard = threading.Lock()

        def worker(index):
            try:
                barrier.wait(timeout=10)
                outcome = target(index)
            except Exception as e:
                outcome = e
            finally:
                connections.close_all()
            with guard:
                results.append(outcome)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(self.workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)
        return results

    def test_parallel_reserves_never_oversell(self):
        def reserve(index):
            return ReservationService.reserve(
                f"ORD-{index}", [{"item_id": self.item.id, "quantity": 3}], ttl=timedelta(minutes=15)
            )

        results = self.run_in_threads(reserve)

        succeeded = [r for r in results if isinstance(r, Reservation)]
        rejected = [r for r in results if isinstance(r, InsufficientStockError)]
        unexpected = [r for r in results if not isinstance(r, (Reservation, InsufficientStockError))]

        self.assertEqual(unexpected, [])
        self.assertEqual(len(succeeded), 3)
        self.assertEqual(len(rejected), self.workers - 3)
        self.assertEqual(Reservation.objects.filter(status=Reservation.Status.ACTIVE).count(), 3)
        self.assertEqual(ReservationService.reserved_quantity(self.item.id), Decimal("9"))
        self.assertEqual(ReservationService.sellable(self.item.id), Decimal("1"))

    def test_parallel_completes_consume_each_hold_once(self):
        reservations = [
            ReservationService.reserve(f"ORD-{i}", [{"item_id": self.item.id, "quantity": 1}])
            for i in range(self.workers)
        ]

        results = self.run_in_threads(lambda index: ReservationService.complete(reservations[index].id))

        self.assertTrue(all(isinstance(r, Reservation) for r in results), results)
        self.assertEqual(BatchLedgerService.available_quantity(self.item.id), Decimal("2"))
        self.assertGreaterEqual(ReservationService.sellable(self.item.id), Decimal("0"))
