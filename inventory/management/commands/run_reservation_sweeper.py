import signal

from django.core.management.base import BaseCommand
from django.utils import timezone

from inventory.conf import engine_setting
from inventory.scheduler import build_scheduler, expiry_job


class Command(BaseCommand):
    help = 'Run the reservation expiry sweeper on a fixed interval'

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.scheduler = None

    def add_arguments(self, parser):
        parser.add_argument(
            '--interval',
            type=int,
            default=None,
            help='Minutes between sweeps (default: EXPIRY_SWEEP_INTERVAL_MINUTES)'
        )
        parser.add_argument(
            '--no-initial-run',
            action='store_true',
            help='Wait one interval before the first sweep'
        )

    def handle(self, *args, **options):
        interval = options['interval'] or engine_setting("EXPIRY_SWEEP_INTERVAL_MINUTES")

        self.stdout.write(self.style.SUCCESS('Starting reservation expiry sweeper...'))
        self.stdout.write(f'Current time: {timezone.now()}')
        self.stdout.write(f'Sweep interval: {interval} min')

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        if not options['no_initial_run']:
            expiry_job()

        self.scheduler = build_scheduler(interval)
        try:
            self.scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            pass

        self.stdout.write(self.style.SUCCESS('Reservation expiry sweeper stopped.'))

    def _signal_handler(self, signum, frame):
        self.stdout.write('\nReceived shutdown signal, stopping...')
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
