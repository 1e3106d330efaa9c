# core/management/commands/enforce_job_resolutions.py


from django.core.management.base import BaseCommand, CommandError

from core.enforcement import initialize_db_enforcement, job_resolution_guards_installed
from core.exceptions import EnforcementError


class Command(BaseCommand):
    help = (
        "Repair completed jobs that have no resolution (internal waiver), then "
        "(re)install the database guards that block completing a job without one."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            '--database',
            default='default',
            help='Database alias to enforce on (default: "default")',
        )
        parser.add_argument(
            '--check',
            action='store_true',
            help='Only report whether the guards are installed; change nothing',
        )

    def handle(self, *args, **options):
        using = options['database']

        if options['check']:
            if job_resolution_guards_installed(using=using):
                self.stdout.write(self.style.SUCCESS('Job resolution guards are installed.'))
                return
            raise CommandError('Job resolution guards are NOT installed.')

        try:
            result = initialize_db_enforcement(using=using)
        except EnforcementError as e:
            raise CommandError(str(e)) from e

        self.stdout.write(self.style.SUCCESS(
            f"Job resolution enforcement active. "
            f"unresolved_found={result.checked} "
            f"repaired={result.repaired}"
        ))
