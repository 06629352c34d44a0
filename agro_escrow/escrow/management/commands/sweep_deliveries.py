from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from escrow.services import SettlementEngine


class Command(BaseCommand):
    help = "Flags escrows whose delivery window has expired as disputed. Safe to run repeatedly."

    def add_arguments(self, parser):
        parser.add_argument('--now', type=str, help='ISO timestamp to sweep at (defaults to the current time)')

    def handle(self, *args, **options):
        now = timezone.now()
        if options['now']:
            now = parse_datetime(options['now'])
            if now is None:
                raise CommandError(f"Invalid ISO timestamp: {options['now']}")
            if timezone.is_naive(now):
                now = timezone.make_aware(now)

        flagged = SettlementEngine().on_expiry_sweep(now)

        for entry in flagged:
            self.stdout.write(f"Flagged order {entry.order_id}")
        self.stdout.write(self.style.SUCCESS(f"Sweep complete: {len(flagged)} escrow(s) flagged."))
