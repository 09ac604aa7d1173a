from django.core.management.base import BaseCommand

from inventory.context import RequestContext
from inventory.services.reservation_service import ReservationService


class Command(BaseCommand):
    help = 'Expire overdue reservations once and release their stock'

    def add_arguments(self, parser):
        parser.add_argument(
            '--tenant',
            type=str,
            default=None,
            help='Only sweep this tenant (default: every tenant with overdue reservations)'
        )
        parser.add_argument(
            '--limit',
            type=int,
            default=None,
            help='Maximum reservations to expire per tenant'
        )

    def handle(self, *args, **options):
        tenant_id = options['tenant']

        if tenant_id:
            ctx = RequestContext.system(tenant_id)
            reports = {tenant_id: ReservationService.expire_due(ctx, limit=options['limit'])}
        else:
            reports = ReservationService.sweep_all_tenants()

        if not reports:
            self.stdout.write('No overdue reservations.')
            return

        for tenant, report in reports.items():
            line = (
                f'{tenant}: expired {report.total_expired}, '
                f'released {report.total_released} units, failed {report.total_failed}'
            )
            if report.total_failed:
                self.stdout.write(self.style.WARNING(line))
                for error in report.errors:
                    self.stdout.write(f'  offset {error["offset"]}: {error["message"]}')
            else:
                self.stdout.write(self.style.SUCCESS(line))
