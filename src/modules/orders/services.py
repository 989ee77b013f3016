"""Order service layer (Use Cases).

``OrderService`` creates orders and recurring templates and re-prices open
orders against the current catalog.
``StatusTransitionService`` is the single writer of ``Order.status``:
every status change (manual, event-driven or scheduled) goes through
``transition`` so the graph, the guards, the side effects and the audit
trail are applied the same way.

Business rules enforced:
- Customer must exist and be active; products must exist and be active.
- Unit prices are snapshotted from the customer's current price unless the
  caller provides one.
- Status transitions are validated against the registry graph and guards.
- History and audit entries are recorded on every status change.
- Side-effect failures never roll back the transition.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

import structlog
from django.conf import settings
from django.db import transaction

from modules.customers.exceptions import CustomerNotFound, InactiveCustomer
from modules.customers.models import CustomerType
from modules.orders.constants import NOTIFIABLE_STATUSES, OrderStatus
from modules.orders.dtos import (
    BulkTransitionFailure,
    BulkTransitionResult,
    BulkTransitionSkip,
    PriceRecalculationError,
    PriceRecalculationFilter,
    PriceRecalculationResult,
    RepricedOrder,
    TransitionContext,
)
from modules.orders.events import OrderCreated, OrderStatusChanged
from modules.orders.exceptions import (
    ConcurrentTransition,
    InvalidTransition,
    OrderDomainError,
    OrderNotFound,
    SideEffectFailure,
)
from modules.orders.registry import StatusRegistry, status_registry
from modules.orders.side_effects import effects_for
from modules.production.services import CropPlanGenerator
from modules.products.exceptions import InactiveProduct, PriceUnavailable, ProductNotFound

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from modules.customers.repositories.interfaces import ICustomerRepository
    from modules.orders.dtos import CreateOrderDTO
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.products.repositories.interfaces import IProductRepository
    from shared.domain.ports import IAuditLog, INotificationSink, IPricingResolver

logger = structlog.get_logger(__name__)

PRICE_TOLERANCE = Decimal("0.001")


class OrderService:
    """Application service for Order creation and look-up.

    Receives repositories via constructor injection (DIP).
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        customer_repository: ICustomerRepository,
        product_repository: IProductRepository,
        pricing_resolver: Optional[IPricingResolver] = None,
        crop_planner: Optional[CropPlanGenerator] = None,
    ) -> None:
        self._order_repo = order_repository
        self._customer_repo = customer_repository
        self._product_repo = product_repository
        if pricing_resolver is None:
            from modules.products.pricing import pricing_resolver
        self._pricing = pricing_resolver
        self._crop_planner = crop_planner or CropPlanGenerator()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @transaction.atomic
    def create_order(self, dto: CreateOrderDTO) -> Order:
        """Create an order, or a recurring template when ``dto.is_recurring``.

        Steps:
        1. Return the existing order for a reused idempotency key.
        2. Validate customer exists and is active.
        3. For each item validate the product (and variation) and snapshot
           the unit price.
        4. Persist order + items + packaging atomically.
        5. Record initial status history.
        6. Draft crop plans for grown items (not for templates).

        Raises:
            CustomerNotFound: customer does not exist.
            InactiveCustomer: customer is inactive.
            ProductNotFound: a product or packaging type does not exist.
            InactiveProduct: a product is inactive.
            PriceUnavailable: a price variation is unknown or unusable.
        """
        log = logger.bind(customer_id=str(dto.customer_id), is_recurring=dto.is_recurring)
        log.info("order.creation_started")

        if dto.idempotency_key:
            existing = self._order_repo.get_by_idempotency_key(dto.idempotency_key)
            if existing:
                log.info(
                    "order.idempotency_hit",
                    order_id=str(existing.id),
                    key=dto.idempotency_key,
                )
                return existing

        customer = self._customer_repo.get_by_id(str(dto.customer_id))
        if not customer:
            raise CustomerNotFound(f"Customer {dto.customer_id} not found.")
        if not customer.is_active:
            raise InactiveCustomer(f"Customer {dto.customer_id} is inactive.")

        repo_items = []
        for item_dto in dto.items:
            product = self._product_repo.get_by_id(str(item_dto.product_id))
            if not product:
                raise ProductNotFound(f"Product {item_dto.product_id} not found.")
            if not product.is_active:
                raise InactiveProduct(f"Product {product.sku} is inactive.")

            variation = None
            if item_dto.price_variation_id is not None:
                variation = self._product_repo.get_variation(
                    str(item_dto.price_variation_id)
                )
                if variation is None:
                    raise PriceUnavailable(
                        f"Price variation {item_dto.price_variation_id} not found."
                    )

            unit_price = item_dto.unit_price
            if unit_price is None:
                unit_price = self._pricing.price_for(customer, product, variation)

            repo_items.append(
                {
                    "product_id": product.id,
                    "price_variation_id": variation.id if variation else None,
                    "quantity": item_dto.quantity,
                    "unit_price": unit_price,
                }
            )

        repo_packaging = []
        for pack_dto in dto.packaging:
            packaging_type = self._product_repo.get_packaging_type(
                str(pack_dto.packaging_type_id)
            )
            if packaging_type is None:
                raise ProductNotFound(
                    f"Packaging type {pack_dto.packaging_type_id} not found."
                )
            repo_packaging.append(
                {
                    "packaging_type_id": packaging_type.id,
                    "quantity": pack_dto.quantity,
                    "notes": pack_dto.notes,
                }
            )

        data: Dict[str, Any] = {
            "customer_id": customer.id,
            "order_type": dto.order_type,
            "billing_frequency": dto.billing_frequency,
            "requires_invoice": dto.requires_invoice,
            "harvest_date": dto.harvest_date,
            "delivery_date": dto.delivery_date,
            "notes": dto.notes or "",
            "idempotency_key": dto.idempotency_key,
            "items": repo_items,
            "packaging": repo_packaging,
            "status": OrderStatus.PENDING,
        }
        if dto.is_recurring:
            data.update(
                status=OrderStatus.TEMPLATE,
                is_recurring=True,
                is_recurring_active=True,
                recurring_frequency=dto.recurring_frequency,
                recurring_interval=dto.recurring_interval,
                recurring_start_date=dto.recurring_start_date,
                recurring_end_date=dto.recurring_end_date,
            )

        order = self._order_repo.create(data)

        if order.is_recurring:
            from modules.recurrence.schedule import compute_next_generation_date

            order.next_generation_date = compute_next_generation_date(order)

        order.add_domain_event(
            OrderCreated(
                aggregate_id=order.id,
                customer_id=str(customer.id),
                status=order.status,
            )
        )
        self._order_repo.save(order)

        self._order_repo.add_history(
            order_id=order.id,
            old_status=None,
            new_status=order.status,
            notes="Recurring template created" if order.is_recurring else "Order created",
        )
        if not order.is_recurring:
            self._crop_planner.sync_order_plans(order)

        log.info("order.created", order_id=str(order.id), status=order.status)

        order_with_relations = self._order_repo.get_by_id(str(order.id))
        return order_with_relations or order

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> Order:
        """Retrieve a single order by ID.

        Raises:
            OrderNotFound: if the order does not exist.
        """
        order = self._order_repo.get_by_id(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def list_orders(self, filters: Optional[Dict[str, Any]] = None):
        return self._order_repo.list(filters)

    # ------------------------------------------------------------------
    # Re-pricing
    # ------------------------------------------------------------------

    def recalculate_prices(
        self,
        criteria: Optional[PriceRecalculationFilter] = None,
        dry_run: bool = False,
    ) -> PriceRecalculationResult:
        """Re-price open orders with each customer's current catalog price.

        Lines whose stored price is more than ``PRICE_TOLERANCE`` away from
        the current one are rewritten and the order total refreshed, one
        transaction per order.  Discount lines (negative prices) are kept as
        written.  With ``dry_run`` nothing is saved.  An order whose price
        cannot be resolved is reported in ``errors`` and left untouched.
        """
        criteria = criteria or PriceRecalculationFilter()
        result = PriceRecalculationResult(dry_run=dry_run)

        for order in self._orders_to_reprice(criteria):
            result.examined += 1
            try:
                repriced = self._reprice(order, dry_run)
            except PriceUnavailable as exc:
                logger.warning(
                    "order.reprice_failed", order_id=str(order.id), reason=str(exc)
                )
                result.errors.append(
                    PriceRecalculationError(
                        order_id=str(order.id), message=str(exc), code="price_unavailable"
                    )
                )
                continue
            if repriced is not None:
                result.repriced.append(repriced)

        logger.info(
            "order.prices_recalculated",
            examined=result.examined,
            repriced=len(result.repriced),
            errors=len(result.errors),
            dry_run=dry_run,
        )
        return result

    def _orders_to_reprice(self, criteria: PriceRecalculationFilter) -> QuerySet:
        filters: Dict[str, Any] = {"is_recurring": False}
        if criteria.order_id is not None:
            filters["id"] = criteria.order_id
        if criteria.customer_id is not None:
            filters["customer_id"] = criteria.customer_id
        if criteria.wholesale_only:
            filters["customer__customer_type"] = CustomerType.WHOLESALE
        if criteria.created_from is not None:
            filters["created_at__date__gte"] = criteria.created_from
        if criteria.created_to is not None:
            filters["created_at__date__lte"] = criteria.created_to

        final = [d.code for d in status_registry.all() if d.is_final]
        return (
            self._order_repo.list(filters)
            .exclude(status__in=[*final, OrderStatus.TEMPLATE])
            .order_by("created_at")
        )

    @transaction.atomic
    def _reprice(self, order: Order, dry_run: bool) -> Optional[RepricedOrder]:
        new_total = Decimal("0")
        changed = []
        for item in order.items.all():
            price = item.unit_price
            if price >= 0:
                current = self._pricing.price_for(
                    order.customer, item.product, item.price_variation
                )
                if abs(current - price) > PRICE_TOLERANCE:
                    changed.append((item, current))
                    price = current
            new_total += item.quantity * price

        if not changed:
            return None

        old_total = order.total_amount
        if not dry_run:
            for item, price in changed:
                item.unit_price = price
                item.save()
            order.refresh_total()

        logger.info(
            "order.repriced",
            order_id=str(order.id),
            items_updated=len(changed),
            old_total=str(old_total),
            new_total=str(new_total),
            dry_run=dry_run,
        )
        return RepricedOrder(
            order_id=str(order.id),
            order_number=order.order_number,
            old_total=old_total,
            new_total=new_total,
            items_updated=len(changed),
        )


class StatusTransitionService:
    """Validates and applies order status changes.

    ``transition`` algorithm:
    1. Resolve the target in the registry (``UnknownStatus``).
    2. Lock the order row, validate the edge and its guards
       (``InvalidTransition``, never retried).
    3. Compare-and-swap the status; a lost race reloads and re-validates
       against the new current status, up to
       ``settings.ORDER_TRANSITION_MAX_RETRIES`` attempts
       (``ConcurrentTransition``).
    4. Run the side effects of the target status, each isolated.
    5. Record history + audit entry, publish ``OrderStatusChanged``.
    6. After the atomic block, notify for notifiable statuses.
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        registry: StatusRegistry = status_registry,
        audit_log: Optional[IAuditLog] = None,
        notification_sink: Optional[INotificationSink] = None,
    ) -> None:
        self._repo = order_repository
        self._registry = registry
        if audit_log is None:
            from modules.core.audit import DatabaseAuditLog

            audit_log = DatabaseAuditLog()
        if notification_sink is None:
            from shared.infrastructure.notifications import LoggingNotificationSink

            notification_sink = LoggingNotificationSink()
        self._audit_log = audit_log
        self._notifications = notification_sink

    # ------------------------------------------------------------------
    # Single order
    # ------------------------------------------------------------------

    def transition(
        self,
        order_id: UUID,
        target_code: str,
        context: Optional[TransitionContext] = None,
    ) -> Order:
        """Move one order to ``target_code``.

        The returned order carries ``side_effect_failures`` (a list of
        ``SideEffectFailure``) for cascades that did not complete.

        Raises:
            UnknownStatus: the target is not in the catalog.
            OrderNotFound: the order does not exist.
            InvalidTransition: the edge does not exist or a guard rejected it.
            ConcurrentTransition: every attempt lost the status race.
        """
        context = context or TransitionContext()
        target = self._registry.get(target_code)
        log = logger.bind(
            order_id=str(order_id),
            target_status=target.code,
            manual=context.manual,
            source_event=context.source_event,
        )

        attempts = max(1, settings.ORDER_TRANSITION_MAX_RETRIES)
        for attempt in range(1, attempts + 1):
            outcome = self._attempt(order_id, target.code, context, log)
            if outcome is not None:
                break
            log.warning("order.transition_conflict", attempt=attempt)
        else:
            raise ConcurrentTransition(
                f"Order {order_id} kept changing status; gave up after {attempts} attempts."
            )

        order, old_status, failures = outcome
        self._notify(order)
        log.info(
            "order.status_updated",
            old_status=old_status,
            side_effect_failures=len(failures),
        )

        refreshed = self._repo.get_by_id(str(order_id)) or order
        refreshed.side_effect_failures = failures
        return refreshed

    def _attempt(
        self,
        order_id: UUID,
        target: str,
        context: TransitionContext,
        log: Any,
    ) -> Optional[Tuple[Order, str, List[SideEffectFailure]]]:
        with transaction.atomic():
            order = self._repo.get_for_update(str(order_id))
            if order is None:
                raise OrderNotFound(f"Order {order_id} not found.")

            old_status = order.status
            try:
                self._registry.validate(old_status, target)
                self._registry.check_guards(order, old_status, target)
            except InvalidTransition as exc:
                log.warning(
                    "order.invalid_transition",
                    current_status=old_status,
                    reason=exc.reason,
                )
                raise

            if not self._repo.compare_and_set_status(order.id, old_status, target):
                return None

            order.status = target
            order.add_domain_event(
                OrderStatusChanged(
                    aggregate_id=order.id,
                    old_status=old_status,
                    new_status=target,
                    manual=context.manual,
                    source_event=context.source_event,
                )
            )
            failures = self._run_side_effects(order, old_status)

            self._repo.add_history(
                order_id=order.id,
                old_status=old_status,
                new_status=target,
                notes=context.notes or "",
                actor_id=context.actor_id,
                source_event=context.source_event,
                manual=context.manual,
            )
            self._audit_log.record(
                order,
                {"status": old_status, "stage": self._registry.stage_of(old_status)},
                {"status": target, "stage": self._registry.stage_of(target)},
                context.actor_id,
                "order.status_changed",
            )
            self._repo.save(order)
        return order, old_status, failures

    def _run_side_effects(self, order: Order, old_status: str) -> List[SideEffectFailure]:
        failures: List[SideEffectFailure] = []
        for effect in effects_for(order.status):
            try:
                with transaction.atomic():
                    effect(order, old_status)
            except Exception as exc:
                logger.exception(
                    "order.side_effect_failed",
                    order_id=str(order.id),
                    effect=effect.__name__,
                )
                failures.append(SideEffectFailure(effect.__name__, str(exc)))
        return failures

    def _notify(self, order: Order) -> None:
        if order.status not in NOTIFIABLE_STATUSES:
            return
        definition = self._registry.get(order.status)
        kind = "warning" if order.status == OrderStatus.CANCELLED else "success"
        self._notifications.notify(
            kind,
            f"Order {order.order_number} {definition.name.lower()}",
            f"Order {order.order_number} is now {definition.name}.",
        )

    # ------------------------------------------------------------------
    # Many orders
    # ------------------------------------------------------------------

    def bulk_transition(
        self,
        order_ids: Iterable[Any],
        target_code: str,
        context: Optional[TransitionContext] = None,
    ) -> BulkTransitionResult:
        """Apply one target status to many orders, each independently.

        Orders in a final status and recurring templates are skipped;
        unknown ids and rejected transitions are reported as failed.

        Raises:
            UnknownStatus: the target is not in the catalog.
        """
        target = self._registry.get(target_code)
        result = BulkTransitionResult()

        for raw_id in dict.fromkeys(str(order_id) for order_id in order_ids):
            order = self._repo.get_by_id(raw_id)
            if order is None:
                result.failed.append(
                    BulkTransitionFailure(
                        order_id=raw_id,
                        reason=f"Order {raw_id} not found.",
                        code=OrderNotFound.code,
                    )
                )
                continue

            if self._registry.is_final(order.status) or order.status == OrderStatus.TEMPLATE:
                result.skipped.append(
                    BulkTransitionSkip(
                        order_id=raw_id,
                        reason=f"Order is {order.status} and cannot be bulk-updated.",
                    )
                )
                continue

            try:
                self.transition(order.id, target.code, context)
            except OrderDomainError as exc:
                result.failed.append(
                    BulkTransitionFailure(order_id=raw_id, reason=exc.message, code=exc.code)
                )
            else:
                result.successful.append(raw_id)

        logger.info(
            "order.bulk_transition_finished",
            target_status=target.code,
            successful=len(result.successful),
            failed=len(result.failed),
            skipped=len(result.skipped),
        )
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def valid_next_statuses(self, order: Order) -> List[str]:
        """Statuses the order can move to right now, guards included."""
        allowed = [
            self._registry.get(code)
            for code in self._registry.allowed_next(order.status)
            if self._registry.failing_guard(order, order.status, code) is None
        ]
        return [str(definition.code) for definition in sorted(allowed, key=lambda d: d.sort_order)]

    def status_history(self, order: Order) -> QuerySet:
        return order.status_history.select_related("actor").order_by("-created_at")
