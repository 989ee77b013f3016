"""Production services: crop planning, aggregation, plan gating and crop lifecycle.

``CropPlanGenerator`` turns an order's grown items into draft plans.
``CropPlanAggregator`` keeps aggregate totals consistent with their plans
and does arithmetic only.  ``CropPlanService`` enforces the approve /
cancel gating rules.  ``CropLifecycleService`` records grow-room progress
and reports it to the business event router, which may advance the order.
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

import structlog
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from modules.production.dtos import CropRequirement
from modules.production.exceptions import CropPlanHasCrops, CropPlanNotApprovable
from modules.production.models import (
    AggregateStatus,
    Crop,
    CropPlan,
    CropPlanAggregate,
    CropPlanStatus,
    CropStage,
)

if TYPE_CHECKING:
    from datetime import datetime

    from modules.orders.models import Order
    from modules.orders.routing import BusinessEventRouter

logger = structlog.get_logger(__name__)

_GRAM = Decimal("0.01")


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class CropPlanAggregator:
    """Sums crop-plan quantities into per-variety sowing batches."""

    @transaction.atomic
    def recalculate_aggregation(self, aggregate: CropPlanAggregate) -> CropPlanAggregate:
        """Recompute trays / grams over the aggregate's non-cancelled plans."""
        live_plans = aggregate.plans.exclude(status=CropPlanStatus.CANCELLED)
        totals = live_plans.aggregate(
            trays=Sum("trays_needed"),
            grams=Sum("grams_needed"),
        )

        aggregate.total_trays_needed = totals["trays"] or 0
        aggregate.total_grams_needed = totals["grams"] or Decimal("0.00")
        aggregate.calculation_details = {
            **(aggregate.calculation_details or {}),
            "last_recalculated": timezone.now().isoformat(),
            "plans_count": live_plans.count(),
        }
        aggregate.save(
            update_fields=[
                "total_trays_needed",
                "total_grams_needed",
                "calculation_details",
                "updated_at",
            ]
        )
        logger.info(
            "crop_aggregate.recalculated",
            aggregate_id=str(aggregate.id),
            trays=aggregate.total_trays_needed,
            grams=str(aggregate.total_grams_needed),
        )
        return aggregate

    @transaction.atomic
    def aggregate_plans(self, plans: Iterable[CropPlan]) -> List[CropPlanAggregate]:
        """Attach plans to draft aggregates keyed by variety and dates.

        Cancelled plans are ignored.  Existing non-cancelled aggregates for
        the same key are reused.
        """
        groups: Dict[Tuple, List[CropPlan]] = defaultdict(list)
        for plan in plans:
            if plan.status == CropPlanStatus.CANCELLED:
                continue
            groups[(plan.product_id, plan.plant_by_date, plan.expected_harvest_date)].append(plan)

        aggregates: List[CropPlanAggregate] = []
        for (product_id, plant_date, harvest_date), grouped in groups.items():
            aggregate = (
                CropPlanAggregate.objects.exclude(status=AggregateStatus.CANCELLED)
                .filter(
                    product_id=product_id,
                    plant_date=plant_date,
                    harvest_date=harvest_date,
                )
                .first()
            )
            if aggregate is None:
                aggregate = CropPlanAggregate.objects.create(
                    product_id=product_id,
                    plant_date=plant_date,
                    harvest_date=harvest_date,
                )
            for plan in grouped:
                plan.aggregate = aggregate
                plan.save(update_fields=["aggregate", "updated_at"])
            aggregates.append(self.recalculate_aggregation(aggregate))
        return aggregates

    @transaction.atomic
    def remove_from_aggregation(self, plan: CropPlan) -> Optional[CropPlanAggregate]:
        """Detach *plan*; an aggregate left without live plans is cancelled."""
        aggregate = plan.aggregate
        if aggregate is None:
            return None

        plan.aggregate = None
        plan.save(update_fields=["aggregate", "updated_at"])
        self.recalculate_aggregation(aggregate)

        if not aggregate.plans.exclude(status=CropPlanStatus.CANCELLED).exists():
            aggregate.status = AggregateStatus.CANCELLED
            aggregate.save(update_fields=["status", "updated_at"])
            logger.info("crop_aggregate.cancelled", aggregate_id=str(aggregate.id))
        return aggregate


# ---------------------------------------------------------------------------
# Plan generation
# ---------------------------------------------------------------------------


class CropPlanGenerator:
    """Derives draft crop plans from an order's grown line items.

    One plan per variety.  Units weigh the variation's fill weight, else the
    product's ``grams_per_unit``; trays are rounded up (at least one) from the
    product's tray yield.  Harvest is the order's harvest date, else the day
    before delivery, and sowing is ``growing_days`` earlier.

    ``sync_order_plans`` is safe to call whenever the order's items may have
    changed: missing plans are created, draft plans are rewritten to match
    and re-aggregated, drafts for varieties no longer ordered are cancelled.
    Once any plan is active or completed the plans are left alone.
    """

    def __init__(self, aggregator: Optional[CropPlanAggregator] = None) -> None:
        self._aggregator = aggregator or CropPlanAggregator()

    def requirements_for(self, order: Order) -> List[CropRequirement]:
        if order.delivery_date is None:
            return []
        harvest_date = order.harvest_date or order.delivery_date - timedelta(days=1)

        grouped: Dict[UUID, Dict] = {}
        items = order.items.select_related("product", "price_variation").filter(
            product__requires_crop_production=True, quantity__gt=0
        )
        for item in items:
            variation = item.price_variation
            grams_per_unit = (
                variation.fill_weight_grams
                if variation is not None and variation.fill_weight_grams
                else item.product.grams_per_unit
            )
            entry = grouped.setdefault(
                item.product_id,
                {"product": item.product, "quantity": Decimal("0"), "grams": Decimal("0")},
            )
            entry["quantity"] += item.quantity
            entry["grams"] += item.quantity * grams_per_unit

        requirements = []
        for product_id, entry in grouped.items():
            product, quantity, grams = entry["product"], entry["quantity"], entry["grams"]
            if grams <= 0:
                continue
            requirements.append(
                CropRequirement(
                    product_id=product_id,
                    quantity_ordered=quantity,
                    grams_per_unit=(grams / quantity).quantize(_GRAM),
                    grams_needed=grams.quantize(_GRAM),
                    trays_needed=max(1, math.ceil(grams / product.tray_yield_grams)),
                    tray_yield_grams=product.tray_yield_grams,
                    plant_by_date=harvest_date - timedelta(days=product.growing_days),
                    expected_harvest_date=harvest_date,
                )
            )
        return requirements

    @transaction.atomic
    def sync_order_plans(self, order: Order) -> List[CropPlan]:
        """Bring the order's draft plans in line with its items.

        Returns the order's live plans.
        """
        log = logger.bind(order_id=str(order.id))
        if order.is_recurring or order.is_final or not order.requires_crop_production:
            return []

        live = list(order.crop_plans.exclude(status=CropPlanStatus.CANCELLED))
        committed = [plan for plan in live if plan.status != CropPlanStatus.DRAFT]
        if committed:
            log.warning(
                "crop_plans.committed_plans_not_synced",
                committed=len(committed),
            )
            return live
        if order.delivery_date is None:
            log.info("crop_plans.no_delivery_date")
            return live

        drafts: Dict[UUID, CropPlan] = {}
        stale: List[CropPlan] = []
        for plan in live:
            if plan.product_id in drafts:
                stale.append(plan)
            else:
                drafts[plan.product_id] = plan

        plans: List[CropPlan] = []
        created = updated = 0
        for requirement in self.requirements_for(order):
            plan = drafts.pop(requirement.product_id, None)
            if plan is None:
                plan = CropPlan.objects.create(
                    order=order,
                    product_id=requirement.product_id,
                    trays_needed=requirement.trays_needed,
                    grams_needed=requirement.grams_needed,
                    plant_by_date=requirement.plant_by_date,
                    expected_harvest_date=requirement.expected_harvest_date,
                    calculation_details=requirement.calculation_details(),
                    notes=f"Generated from order {order.order_number}",
                )
                created += 1
            else:
                moved = (plan.plant_by_date, plan.expected_harvest_date) != (
                    requirement.plant_by_date,
                    requirement.expected_harvest_date,
                )
                plan.trays_needed = requirement.trays_needed
                plan.grams_needed = requirement.grams_needed
                plan.plant_by_date = requirement.plant_by_date
                plan.expected_harvest_date = requirement.expected_harvest_date
                plan.calculation_details = requirement.calculation_details()
                plan.save(
                    update_fields=[
                        "trays_needed",
                        "grams_needed",
                        "plant_by_date",
                        "expected_harvest_date",
                        "calculation_details",
                        "updated_at",
                    ]
                )
                if moved:
                    self._aggregator.remove_from_aggregation(plan)
                updated += 1
            plans.append(plan)

        stale.extend(drafts.values())
        for plan in stale:
            plan.status = CropPlanStatus.CANCELLED
            plan.save(update_fields=["status", "updated_at"])
            self._aggregator.remove_from_aggregation(plan)

        self._aggregator.aggregate_plans(plans)
        log.info(
            "crop_plans.synced",
            created=created,
            updated=updated,
            cancelled=len(stale),
        )
        return plans


# ---------------------------------------------------------------------------
# Plan gating
# ---------------------------------------------------------------------------


class CropPlanService:
    def __init__(self, aggregator: Optional[CropPlanAggregator] = None) -> None:
        self._aggregator = aggregator or CropPlanAggregator()

    @transaction.atomic
    def approve(self, plan: CropPlan, user=None) -> CropPlan:
        """Activate a draft plan and put its crop batch on the schedule.

        Raises:
            CropPlanNotApprovable: the plan is not a draft.
        """
        if not plan.can_be_approved:
            raise CropPlanNotApprovable(
                f"Crop plan {plan.id} is {plan.status}; only draft plans can be approved."
            )
        plan.status = CropPlanStatus.ACTIVE
        plan.approved_at = timezone.now()
        plan.approved_by = user
        plan.save(update_fields=["status", "approved_at", "approved_by", "updated_at"])

        Crop.objects.create(
            order_id=plan.order_id,
            crop_plan=plan,
            tray_count=max(plan.trays_needed, 1),
        )
        logger.info("crop_plan.approved", plan_id=str(plan.id), order_id=str(plan.order_id))
        return plan

    @transaction.atomic
    def cancel(self, plan: CropPlan) -> CropPlan:
        """Cancel a plan that has no crops and drop it from its aggregate.

        Raises:
            CropPlanHasCrops: crops are already attached to the plan.
        """
        if plan.crops.exists():
            raise CropPlanHasCrops(
                f"Crop plan {plan.id} has crops attached and cannot be cancelled."
            )
        plan.status = CropPlanStatus.CANCELLED
        plan.save(update_fields=["status", "updated_at"])
        self._aggregator.remove_from_aggregation(plan)
        logger.info("crop_plan.cancelled", plan_id=str(plan.id))
        return plan


# ---------------------------------------------------------------------------
# Crop lifecycle (feeds the business event router)
# ---------------------------------------------------------------------------


class CropLifecycleService:
    def __init__(self, router: Optional[BusinessEventRouter] = None) -> None:
        if router is None:
            from modules.orders.routing import business_event_router

            router = business_event_router
        self._router = router

    @transaction.atomic
    def record_planting(self, crop: Crop, planted_at: Optional[datetime] = None) -> Crop:
        crop.planted_at = planted_at or timezone.now()
        if crop.stage == CropStage.SOAKING:
            crop.stage = CropStage.GERMINATION
        crop.save(update_fields=["planted_at", "stage", "updated_at"])
        logger.info("crop.planted", crop_id=str(crop.id), order_id=str(crop.order_id))

        self._router.handle_business_event(
            crop.order, "crop.planted", {"crop_id": str(crop.id)}
        )
        return crop

    @transaction.atomic
    def mark_ready(self, crop: Crop) -> Crop:
        crop.stage = CropStage.LIGHT
        crop.save(update_fields=["stage", "updated_at"])
        logger.info("crop.ready", crop_id=str(crop.id), order_id=str(crop.order_id))

        self._router.handle_business_event(crop.order, "crops.ready", {"crop_id": str(crop.id)})
        return crop

    @transaction.atomic
    def record_harvest(self, crop: Crop, harvested_at: Optional[datetime] = None) -> Crop:
        crop.stage = CropStage.HARVESTED
        crop.harvested_at = harvested_at or timezone.now()
        crop.save(update_fields=["stage", "harvested_at", "updated_at"])
        logger.info("crop.harvested", crop_id=str(crop.id), order_id=str(crop.order_id))

        self._router.handle_business_event(
            crop.order, "harvest.completed", {"crop_id": str(crop.id)}
        )
        return crop
