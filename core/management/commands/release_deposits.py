# core/management/commands/release_deposits.py


from django.core.management.base import BaseCommand
from django.utils import timezone

from core.services.deposit_release import (
    DepositReleaseScheduler,
    bookings_awaiting_release,
    release_amount_for,
)


class Command(BaseCommand):
    help = "Run one deposit auto-release cycle (same logic as the periodic Celery task)."

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show which bookings would be released without moving any money',
        )

    def handle(self, *args, **options):
        now = timezone.now()

        if options['dry_run']:
            eligible = bookings_awaiting_release(now).select_related('owner')
            count = eligible.count()
            if count == 0:
                self.stdout.write(self.style.SUCCESS('No deposits awaiting release.'))
                return

            self.stdout.write(self.style.WARNING(f'DRY RUN - {count} booking(s) awaiting release:'))
            for booking in eligible:
                destination = booking.owner.stripe_account_id or '(no destination)'
                self.stdout.write(
                    f'  - Booking #{booking.id}: {release_amount_for(booking)} '
                    f'{booking.deposit_currency} -> {destination}'
                )
            return

        result = DepositReleaseScheduler().run_cycle(now=now)

        for booking_id, outcome in result.outcomes.items():
            style = self.style.ERROR if outcome == 'failed' else (lambda s: s)
            self.stdout.write(style(f'  Booking #{booking_id}: {outcome}'))

        self.stdout.write(self.style.SUCCESS(
            f"Deposit auto-release complete. "
            f"found={result.found} "
            f"released={result.released} "
            f"skipped={result.skipped} "
            f"failed={result.failed}"
        ))
