from __future__ import annotations

from datetime import date
from uuid import UUID

from django.core.management.base import BaseCommand, CommandError, CommandParser
from django.db import DatabaseError, connections

from modules.customers.repositories.django_repository import CustomerDjangoRepository
from modules.orders.dtos import PriceRecalculationFilter
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.services import OrderService
from modules.products.repositories.django_repository import ProductDjangoRepository


class Command(BaseCommand):
    help = (
        "Re-price open orders with each customer's current catalog price. "
        "Templates and delivered or cancelled orders are never touched."
    )

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument("--order", dest="order_id", type=UUID, help="Only this order.")
        parser.add_argument(
            "--customer", dest="customer_id", type=UUID, help="Only this customer's orders."
        )
        parser.add_argument(
            "--wholesale",
            dest="wholesale_only",
            action="store_true",
            help="Only orders of wholesale customers.",
        )
        parser.add_argument(
            "--from",
            dest="created_from",
            type=date.fromisoformat,
            help="Orders created on or after this date (YYYY-MM-DD).",
        )
        parser.add_argument(
            "--to",
            dest="created_to",
            type=date.fromisoformat,
            help="Orders created on or before this date (YYYY-MM-DD).",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would change without saving.",
        )

    def handle(self, *args, **options):
        try:
            connections["default"].ensure_connection()
        except DatabaseError as exc:
            raise CommandError(f"Database unavailable: {exc}") from exc

        criteria = PriceRecalculationFilter(
            order_id=options["order_id"],
            customer_id=options["customer_id"],
            wholesale_only=options["wholesale_only"],
            created_from=options["created_from"],
            created_to=options["created_to"],
        )
        service = OrderService(
            order_repository=OrderDjangoRepository(),
            customer_repository=CustomerDjangoRepository(),
            product_repository=ProductDjangoRepository(),
        )
        result = service.recalculate_prices(criteria, dry_run=options["dry_run"])

        for order in result.repriced:
            self.stdout.write(
                f"{order.order_number}: {order.old_total:.2f} -> {order.new_total:.2f} "
                f"({order.items_updated} items)"
            )
        for error in result.errors:
            self.stderr.write(
                self.style.WARNING(f"{error.order_id}: [{error.code}] {error.message}")
            )

        prefix = "[DRY RUN] " if result.dry_run else ""
        self.stdout.write(
            self.style.SUCCESS(
                f"{prefix}Order prices recalculated: "
                f"examined={result.examined}, "
                f"repriced={len(result.repriced)}, "
                f"errors={len(result.errors)}, "
                f"difference={result.total_difference:.2f}"
            )
        )
