import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from inventory.services.sweeper_service import ExpirySweeper, JOB_ID

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Expire overdue reservations and raise batch expiry alerts on a fixed interval'

    def add_arguments(self, parser):
        parser.add_argument(
            '--interval',
            type=int,
            default=None,
            help='Seconds between sweeps (default: INVENTORY_SWEEPER_INTERVAL_SECONDS)'
        )
        parser.add_argument(
            '--once',
            action='store_true',
            help='Run a single sweep and exit'
        )

    def handle(self, *args, **options):
        sweeper = ExpirySweeper()

        if options['once']:
            result = sweeper.run_once()
            self._report(result)
            return

        interval = options['interval'] or getattr(settings, 'INVENTORY_SWEEPER_INTERVAL_SECONDS', 60)
        if interval <= 0:
            self.stderr.write(self.style.ERROR('--interval must be positive'))
            return

        self.stdout.write(self.style.SUCCESS('Starting inventory expiry sweeper...'))
        self.stdout.write(f'Current time: {timezone.now()}')
        self.stdout.write(f'Sweep interval: {interval}s')

        scheduler = BlockingScheduler()
        scheduler.add_job(
            lambda: self._sweep(sweeper),
            IntervalTrigger(seconds=interval),
            id=JOB_ID,
            name='Expire reservations and raise expiry alerts',
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=timezone.now(),
        )

        try:
            self.stdout.write('Scheduler started. Press Ctrl+C to exit.')
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            self.stdout.write('\nReceived shutdown signal, stopping...')
            scheduler.shutdown(wait=False)

        self.stdout.write(self.style.SUCCESS('Inventory expiry sweeper stopped.'))

    def _sweep(self, sweeper: ExpirySweeper):
        try:
            self._report(sweeper.run_once())
        except Exception as e:
            logger.error(f'Error in sweep: {e}')
            self.stdout.write(self.style.ERROR(f'Error: {e}'))

    def _report(self, result):
        self.stdout.write(
            f'[{result.ran_at.isoformat()}] expired {len(result.expired_reservations)} reservation(s), '
            f'{len(result.raised)} new alert(s), {len(result.alerts)} active alert(s)'
        )
        for failure in result.failed_reservations:
            self.stdout.write(self.style.WARNING(
                f"Reservation {failure['reservation_id']} not expired: {failure['error']}"
            ))
        for alert in result.raised:
            self.stdout.write(f'  [{alert.severity}] {alert.message}')
