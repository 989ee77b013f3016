from __future__ import annotations

from datetime import date

from django.core.management.base import BaseCommand, CommandError, CommandParser
from django.db import DatabaseError, connections

from modules.recurrence.services import RecurrenceScheduler


class Command(BaseCommand):
    help = "Generate the orders that recurring templates have due."

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "--date",
            dest="run_date",
            type=date.fromisoformat,
            default=None,
            help="Run as if today were this date (YYYY-MM-DD).",
        )

    def handle(self, *args, **options):
        try:
            connections["default"].ensure_connection()
        except DatabaseError as exc:
            raise CommandError(f"Database unavailable: {exc}") from exc

        result = RecurrenceScheduler().process_recurring_orders(today=options["run_date"])

        for error in result.errors:
            self.stderr.write(
                self.style.WARNING(f"{error.order_id}: [{error.code}] {error.message}")
            )
        self.stdout.write(
            self.style.SUCCESS(
                "Recurring orders processed: "
                f"processed={result.processed}, "
                f"generated={result.generated}, "
                f"skipped={result.skipped}, "
                f"deactivated={result.deactivated}, "
                f"errors={len(result.errors)}"
            )
        )
