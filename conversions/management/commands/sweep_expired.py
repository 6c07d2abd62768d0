from django.core.management.base import BaseCommand

from conversions.sweeper import sweep_expired


class Command(BaseCommand):
    help = "Delete artifacts and records of completed jobs past their expiry."

    def handle(self, *args, **options):
        report = sweep_expired()
        self.stdout.write(
            self.style.SUCCESS(
                f"Removed {report.jobs_deleted} job(s), {report.files_deleted} file(s) "
                f"({report.files_missing} already missing, {report.files_failed} failed)"
            )
        )
