"""Recurring order scheduler.

``process_recurring_orders`` is the periodic pass (Celery beat and the
``process_recurring_orders`` management command).  Each template is
handled in its own transaction holding a row lock, so overlapping passes
serialise per template; the delivery-date existence check plus the
``(parent_recurring_order, delivery_date)`` unique constraint make a
second generation for the same date a silent skip.

Due date of a template: its stored ``next_generation_date``.  After every
generation it is recomputed as one step past ``last_generated_at``;
``resume`` restarts it one step past the resume date.

Generated orders and failed templates are reported to the notification
sink once the template's transaction is over.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, List, Optional, Tuple
from uuid import UUID

import structlog
from django.conf import settings
from django.db import transaction
from django.db.models import Max, QuerySet
from django.utils import timezone

from modules.orders.exceptions import (
    DuplicateGeneration,
    InactiveTemplate,
    NotRecurringTemplate,
    OrderNotFound,
)
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.recurrence.dtos import (
    RecurrenceError,
    RecurrenceRunResult,
    RecurrenceStats,
    UpcomingGeneration,
)
from modules.recurrence.events import RecurringOrderGenerated
from modules.recurrence.materializer import OrderMaterializer
from modules.recurrence.schedule import compute_next_generation_date, due_date, order_dates

if TYPE_CHECKING:
    from modules.orders.dtos import CreateOrderDTO
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.orders.services import OrderService
    from shared.domain.ports import IAuditLog, INotificationSink

logger = structlog.get_logger(__name__)

GENERATED = "generated"
SKIPPED = "skipped"
DEACTIVATED = "deactivated"


class RecurrenceScheduler:
    def __init__(
        self,
        order_repository: Optional[IOrderRepository] = None,
        materializer: Optional[OrderMaterializer] = None,
        audit_log: Optional[IAuditLog] = None,
        order_service: Optional[OrderService] = None,
        notification_sink: Optional[INotificationSink] = None,
    ) -> None:
        self._repo = order_repository or OrderDjangoRepository()
        self._materializer = materializer or OrderMaterializer(self._repo)
        if audit_log is None:
            from modules.core.audit import DatabaseAuditLog

            audit_log = DatabaseAuditLog()
        if notification_sink is None:
            from shared.infrastructure.notifications import LoggingNotificationSink

            notification_sink = LoggingNotificationSink()
        self._audit_log = audit_log
        self._order_service = order_service
        self._notifications = notification_sink

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def templates() -> QuerySet:
        return Order.objects.alive().filter(
            is_recurring=True,
            parent_recurring_order__isnull=True,
        )

    def upcoming(
        self, days: Optional[int] = None, today: Optional[date] = None
    ) -> List[UpcomingGeneration]:
        """Active templates due within *days* (overdue ones included)."""
        if days is None:
            days = settings.RECURRING_ORDERS_UPCOMING_DAYS
        today = today or timezone.localdate()
        horizon = today + timedelta(days=days)

        upcoming = []
        for template in self.templates().filter(is_recurring_active=True).select_related(
            "customer"
        ):
            due = due_date(template)
            if due is None or due > horizon:
                continue
            if template.recurring_end_date and due > template.recurring_end_date:
                continue
            _, delivery = order_dates(due)
            upcoming.append(
                UpcomingGeneration(
                    template_id=str(template.id),
                    order_number=template.order_number,
                    customer_name=template.customer.name,
                    next_generation_date=due,
                    delivery_date=delivery,
                    overdue=due < today,
                )
            )
        return sorted(upcoming, key=lambda entry: entry.next_generation_date)

    def stats(self, today: Optional[date] = None) -> RecurrenceStats:
        templates = self.templates()
        generated = Order.objects.alive().filter(parent_recurring_order__isnull=False)
        last = templates.aggregate(last=Max("last_generated_at"))["last"]
        return RecurrenceStats(
            active_templates=templates.filter(is_recurring_active=True).count(),
            paused_templates=templates.filter(is_recurring_active=False).count(),
            total_generated=generated.count(),
            upcoming_week=len(self.upcoming(7, today)),
            last_generated_at=last.isoformat() if last else None,
        )

    # ------------------------------------------------------------------
    # Periodic pass
    # ------------------------------------------------------------------

    def process_recurring_orders(self, today: Optional[date] = None) -> RecurrenceRunResult:
        """Generate every due order once; never raises for a single template."""
        today, now = _clock(today)
        result = RecurrenceRunResult()
        log = logger.bind(run_date=today.isoformat())
        log.info("recurrence.run_started")

        template_ids = list(self.templates().order_by("created_at").values_list("id", flat=True))
        for template_id in template_ids:
            result.processed += 1
            try:
                outcome, order = self._process_template(template_id, today, now)
            except Exception as exc:
                code = getattr(exc, "code", "unexpected_error")
                log.exception(
                    "recurrence.template_failed", template_id=str(template_id), code=code
                )
                result.errors.append(
                    RecurrenceError(
                        order_id=str(template_id),
                        message=getattr(exc, "message", None) or str(exc),
                        code=code,
                    )
                )
                self._notifications.notify(
                    "danger",
                    "Recurring order generation failed",
                    f"Template {template_id}: {result.errors[-1].message}",
                )
                continue

            if outcome == GENERATED:
                result.generated += 1
                self._notify_generated(order)
            elif outcome == DEACTIVATED:
                result.deactivated += 1
            else:
                result.skipped += 1

        log.info(
            "recurrence.run_finished",
            processed=result.processed,
            generated=result.generated,
            skipped=result.skipped,
            deactivated=result.deactivated,
            errors=len(result.errors),
        )
        return result

    @transaction.atomic
    def _process_template(
        self, template_id: UUID, today: date, now: datetime
    ) -> Tuple[str, Optional[Order]]:
        template = self._repo.get_for_update(str(template_id))
        if template is None:
            return SKIPPED, None
        log = logger.bind(template_id=str(template.id))

        if not (template.is_recurring_template and template.is_recurring_active):
            return SKIPPED, None

        if template.recurring_end_date and template.recurring_end_date < today:
            template.is_recurring_active = False
            template.save(update_fields=["is_recurring_active", "updated_at"])
            self._audit_log.record(
                template,
                {"is_recurring_active": True},
                {"is_recurring_active": False},
                None,
                "recurrence.template_expired",
            )
            log.info(
                "recurrence.template_deactivated",
                end_date=template.recurring_end_date.isoformat(),
            )
            return DEACTIVATED, None

        due = due_date(template)
        if due is None or due > today:
            return SKIPPED, None

        try:
            order = self._generate(template, due, now)
        except DuplicateGeneration:
            self._skip_duplicate(template, due)
            return SKIPPED, None
        return GENERATED, order

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _generate(self, template: Order, due: date, now: datetime) -> Order:
        harvest, delivery = order_dates(due)
        if self._repo.exists_generated(template.id, delivery):
            raise DuplicateGeneration(
                f"Template {template.order_number} already generated an order "
                f"for {delivery.isoformat()}."
            )

        order = self._materializer.generate(template, harvest, delivery)

        previous = template.next_generation_date
        template.last_generated_at = now
        template.next_generation_date = compute_next_generation_date(template)
        template.add_domain_event(
            RecurringOrderGenerated(
                aggregate_id=template.id,
                generated_order_id=str(order.id),
                harvest_date=harvest,
                delivery_date=delivery,
                next_generation_date=template.next_generation_date,
            )
        )
        self._repo.save(template)
        self._audit_log.record(
            template,
            {"next_generation_date": previous},
            {
                "next_generation_date": template.next_generation_date,
                "generated_order": order.order_number,
            },
            None,
            "recurrence.order_generated",
        )
        logger.info(
            "recurrence.order_generated",
            template_id=str(template.id),
            order_id=str(order.id),
            delivery_date=delivery.isoformat(),
            next_generation_date=str(template.next_generation_date),
        )
        return order

    def _notify_generated(self, order: Order) -> None:
        self._notifications.notify(
            "success",
            f"Recurring order {order.order_number} generated",
            f"Order {order.order_number} was generated for delivery on "
            f"{order.delivery_date.isoformat()}.",
        )

    def _skip_duplicate(self, template: Order, due: date) -> None:
        template.next_generation_date = compute_next_generation_date(template, since=due)
        template.save(update_fields=["next_generation_date", "updated_at"])
        logger.info(
            "recurrence.duplicate_skipped",
            template_id=str(template.id),
            due_date=due.isoformat(),
            next_generation_date=str(template.next_generation_date),
        )

    # ------------------------------------------------------------------
    # Template management
    # ------------------------------------------------------------------

    def create_template(self, dto: CreateOrderDTO) -> Order:
        """Create a recurring template through the regular order use case.

        Raises:
            NotRecurringTemplate: ``dto.is_recurring`` is false.
        """
        if not dto.is_recurring:
            raise NotRecurringTemplate("Recurring templates must set is_recurring.")
        return self._get_order_service().create_order(dto)

    @transaction.atomic
    def pause(self, template_id: UUID) -> Order:
        template = self._lock_template(template_id)
        if template.is_recurring_active:
            template.is_recurring_active = False
            template.save(update_fields=["is_recurring_active", "updated_at"])
            self._audit_log.record(
                template,
                {"is_recurring_active": True},
                {"is_recurring_active": False},
                None,
                "recurrence.template_paused",
            )
            logger.info("recurrence.template_paused", template_id=str(template.id))
        return template

    @transaction.atomic
    def resume(self, template_id: UUID, today: Optional[date] = None) -> Order:
        """Reactivate a template; its next order is due one step after *today*."""
        today, _ = _clock(today)
        template = self._lock_template(template_id)
        previous = template.next_generation_date
        template.is_recurring_active = True
        template.next_generation_date = compute_next_generation_date(template, since=today)
        template.save(
            update_fields=["is_recurring_active", "next_generation_date", "updated_at"]
        )
        self._audit_log.record(
            template,
            {"is_recurring_active": False, "next_generation_date": previous},
            {"is_recurring_active": True, "next_generation_date": template.next_generation_date},
            None,
            "recurrence.template_resumed",
        )
        logger.info(
            "recurrence.template_resumed",
            template_id=str(template.id),
            next_generation_date=str(template.next_generation_date),
        )
        return template

    def generate_next(self, template_id: UUID, today: Optional[date] = None) -> Order:
        """Generate the template's next order now, even if it is not due yet.

        Raises:
            OrderNotFound: no such order.
            NotRecurringTemplate: the order is not a recurring template.
            InactiveTemplate: the template is paused or expired.
            DuplicateGeneration: the next delivery date is already covered.
            MaterializationFailure: pricing or persistence failed.
        """
        order = self._generate_next(template_id, today)
        self._notify_generated(order)
        return order

    @transaction.atomic
    def _generate_next(self, template_id: UUID, today: Optional[date]) -> Order:
        today, now = _clock(today)
        template = self._lock_template(template_id)
        if not template.is_recurring_active:
            raise InactiveTemplate(f"Template {template.order_number} is paused.")
        if template.recurring_end_date and template.recurring_end_date < today:
            raise InactiveTemplate(f"Template {template.order_number} has ended.")

        due = due_date(template)
        if due is None:
            raise NotRecurringTemplate(
                f"Template {template.order_number} has no recurrence schedule."
            )
        return self._generate(template, due, now)

    def _lock_template(self, template_id: UUID) -> Order:
        template = self._repo.get_for_update(str(template_id))
        if template is None:
            raise OrderNotFound(f"Order {template_id} not found.")
        if not template.is_recurring_template:
            raise NotRecurringTemplate(
                f"Order {template.order_number} is not a recurring template."
            )
        return template

    def _get_order_service(self) -> OrderService:
        if self._order_service is None:
            from modules.customers.repositories.django_repository import (
                CustomerDjangoRepository,
            )
            from modules.orders.services import OrderService
            from modules.products.repositories.django_repository import (
                ProductDjangoRepository,
            )

            self._order_service = OrderService(
                order_repository=self._repo,
                customer_repository=CustomerDjangoRepository(),
                product_repository=ProductDjangoRepository(),
            )
        return self._order_service


def _clock(today: Optional[date]) -> Tuple[date, datetime]:
    """``(run date, run instant)``; an explicit date runs at its local midnight."""
    if today is None:
        now = timezone.now()
        return timezone.localdate(now), now
    return today, timezone.make_aware(datetime.combine(today, time.min))
