"""
Management command to check orders against their audit history.
Reports milestone timestamps that disagree with the audit log and visited
state sequences that leave the intent path. Nothing is repaired.

Usage:
    python manage.py reconcile_orders                 # All orders
    python manage.py reconcile_orders --order <uuid>  # One order
    python manage.py reconcile_orders --limit 100
"""
from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError
from apps.orders.models import Order
from apps.orders.services.reconciliation import reconcile_order


class Command(BaseCommand):
    help = 'Check order milestones and state history against the audit log'

    def add_arguments(self, parser):
        parser.add_argument(
            '--order',
            help='Only reconcile this order id',
        )
        parser.add_argument(
            '--limit',
            type=int,
            default=None,
            help='Maximum number of orders to check',
        )

    def handle(self, *args, **options):
        orders = Order.objects.order_by('created_at')
        if options['order']:
            try:
                orders = orders.filter(pk=options['order'])
                found = orders.exists()
            except (ValidationError, ValueError):
                found = False
            if not found:
                raise CommandError(f"Order {options['order']} not found")
        if options['limit']:
            orders = orders[:options['limit']]

        checked = 0
        failing = 0
        for order in orders.iterator():
            checked += 1
            report = reconcile_order(order)
            if report.is_clean:
                continue

            failing += 1
            self.stdout.write(self.style.WARNING(f'Order {report.order_id} ({order.intent})'))
            if not report.history_valid:
                self.stdout.write(f"  - invalid history: {' -> '.join(report.visited)}")
            for discrepancy in report.discrepancies:
                self.stdout.write(f'  - {discrepancy}')

        if failing:
            self.stdout.write(self.style.ERROR(f'{failing} of {checked} orders do not reconcile'))
        else:
            self.stdout.write(self.style.SUCCESS(f'All {checked} orders reconcile'))
