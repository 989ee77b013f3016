"""Order status catalog and transition graph.

The catalog and the edges are code-defined and frozen at import; the
module-level ``status_registry`` is the single read-only instance every
service validates against.

Edges are declared explicitly, forward through the stages plus two
correction edges (``confirmed -> pending``, ``ready_for_delivery -> packing``)
and the pre-production rollbacks to ``draft``.  Final statuses have no
outgoing edges and a template can only be cancelled.

Business rules that depend on the order itself (crops, payment) are
expressed as guards attached to target statuses or stage jumps and are
checked after the edge itself is known to exist.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, Iterable, List, Mapping, Optional, Tuple

from modules.orders.constants import STAGE_ORDER, OrderStatus, Stage
from modules.orders.exceptions import InvalidTransition, UnknownStatus

if TYPE_CHECKING:
    from modules.orders.models import Order


@dataclass(frozen=True)
class StatusDefinition:
    code: str
    name: str
    stage: str
    is_final: bool = False
    allows_modifications: bool = False
    requires_crops: bool = False
    sort_order: int = 0

    @property
    def stage_rank(self) -> int:
        return STAGE_ORDER[self.stage]


STATUS_CATALOG: Tuple[StatusDefinition, ...] = (
    StatusDefinition(
        OrderStatus.DRAFT, "Draft", Stage.PRE_PRODUCTION,
        allows_modifications=True, sort_order=1,
    ),
    StatusDefinition(
        OrderStatus.PENDING, "Pending", Stage.PRE_PRODUCTION,
        allows_modifications=True, sort_order=2,
    ),
    StatusDefinition(
        OrderStatus.CONFIRMED, "Confirmed", Stage.PRE_PRODUCTION,
        allows_modifications=True, sort_order=3,
    ),
    StatusDefinition(
        OrderStatus.GROWING, "Growing", Stage.PRODUCTION,
        requires_crops=True, sort_order=4,
    ),
    StatusDefinition(
        OrderStatus.READY_TO_HARVEST, "Ready to Harvest", Stage.PRODUCTION,
        requires_crops=True, sort_order=5,
    ),
    StatusDefinition(
        OrderStatus.HARVESTING, "Harvesting", Stage.PRODUCTION,
        requires_crops=True, sort_order=6,
    ),
    StatusDefinition(OrderStatus.PACKING, "Packing", Stage.FULFILLMENT, sort_order=7),
    StatusDefinition(
        OrderStatus.READY_FOR_DELIVERY, "Ready for Delivery", Stage.FULFILLMENT,
        sort_order=8,
    ),
    StatusDefinition(
        OrderStatus.OUT_FOR_DELIVERY, "Out for Delivery", Stage.FULFILLMENT,
        sort_order=9,
    ),
    StatusDefinition(
        OrderStatus.DELIVERED, "Delivered", Stage.FINAL, is_final=True, sort_order=10,
    ),
    StatusDefinition(
        OrderStatus.CANCELLED, "Cancelled", Stage.FINAL, is_final=True, sort_order=11,
    ),
    StatusDefinition(
        OrderStatus.TEMPLATE, "Recurring Template", Stage.PRE_PRODUCTION,
        allows_modifications=True, sort_order=0,
    ),
)


_S = OrderStatus

TRANSITIONS: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        _S.DRAFT: frozenset({_S.PENDING, _S.CONFIRMED, _S.CANCELLED}),
        _S.PENDING: frozenset({_S.DRAFT, _S.CONFIRMED, _S.CANCELLED}),
        _S.CONFIRMED: frozenset(
            {_S.DRAFT, _S.PENDING, _S.GROWING, _S.PACKING, _S.CANCELLED}
        ),
        _S.GROWING: frozenset({_S.READY_TO_HARVEST, _S.HARVESTING, _S.CANCELLED}),
        _S.READY_TO_HARVEST: frozenset({_S.HARVESTING, _S.PACKING, _S.CANCELLED}),
        _S.HARVESTING: frozenset({_S.PACKING, _S.CANCELLED}),
        _S.PACKING: frozenset({_S.READY_FOR_DELIVERY, _S.CANCELLED}),
        _S.READY_FOR_DELIVERY: frozenset(
            {_S.PACKING, _S.OUT_FOR_DELIVERY, _S.DELIVERED, _S.CANCELLED}
        ),
        _S.OUT_FOR_DELIVERY: frozenset({_S.DELIVERED, _S.CANCELLED}),
        _S.DELIVERED: frozenset(),
        _S.CANCELLED: frozenset(),
        _S.TEMPLATE: frozenset({_S.CANCELLED}),
    }
)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransitionGuard:
    """Order-dependent precondition on a class of edges.

    ``applies`` selects the edges (by source / target definition), ``allows``
    inspects the order.  ``reason`` is surfaced on rejection.
    """

    name: str
    applies: Callable[[StatusDefinition, StatusDefinition], bool]
    allows: Callable[[Order], bool]
    reason: str


def _skips_production(source: StatusDefinition, target: StatusDefinition) -> bool:
    return source.stage == Stage.PRE_PRODUCTION and target.stage == Stage.FULFILLMENT


def _targets(code: str) -> Callable[[StatusDefinition, StatusDefinition], bool]:
    return lambda source, target: target.code == code


GUARDS: Tuple[TransitionGuard, ...] = (
    TransitionGuard(
        name="crop_orders_go_through_production",
        applies=_skips_production,
        allows=lambda order: not order.requires_crop_production,
        reason="Orders with crops must go through production before fulfillment.",
    ),
    TransitionGuard(
        name="packing_requires_harvest",
        applies=_targets(_S.PACKING),
        allows=lambda order: (
            not order.requires_crop_production or order.all_crops_harvested
        ),
        reason="All crops must be harvested before packing.",
    ),
    TransitionGuard(
        name="delivery_requires_payment",
        applies=_targets(_S.READY_FOR_DELIVERY),
        allows=lambda order: not order.requires_immediate_invoicing or order.is_paid,
        reason="Order must be paid before it can be marked ready for delivery.",
    ),
)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class StatusRegistry:
    """Read-only view over the catalog, the edges and the guards."""

    def __init__(
        self,
        catalog: Iterable[StatusDefinition],
        transitions: Mapping[str, frozenset[str]],
        guards: Iterable[TransitionGuard] = (),
    ) -> None:
        self._statuses: Mapping[str, StatusDefinition] = MappingProxyType(
            {definition.code: definition for definition in catalog}
        )
        self._transitions = transitions
        self._guards: Tuple[TransitionGuard, ...] = tuple(guards)

        for source, targets in transitions.items():
            unknown = {source, *targets} - set(self._statuses)
            if unknown:
                raise UnknownStatus(sorted(unknown)[0])

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get(self, code: str) -> StatusDefinition:
        try:
            return self._statuses[code]
        except KeyError:
            raise UnknownStatus(code) from None

    def find(self, code: str) -> Optional[StatusDefinition]:
        return self._statuses.get(code)

    def all(self) -> List[StatusDefinition]:
        return sorted(self._statuses.values(), key=lambda d: d.sort_order)

    def stage_of(self, code: str) -> str:
        return self.get(code).stage

    def is_final(self, code: str) -> bool:
        return self.get(code).is_final

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def allowed_next(self, from_code: str) -> frozenset[str]:
        self.get(from_code)
        return self._transitions.get(from_code, frozenset())

    def is_valid_transition(self, from_code: str, to_code: str) -> bool:
        if from_code not in self._statuses or to_code not in self._statuses:
            return False
        return to_code in self._transitions.get(from_code, frozenset())

    def validate(self, from_code: str, to_code: str) -> None:
        """Raise unless ``from_code -> to_code`` is an edge of the graph.

        Raises:
            UnknownStatus: either code is not in the catalog.
            InvalidTransition: the edge does not exist.
        """
        source = self.get(from_code)
        target = self.get(to_code)
        if source.is_final:
            raise InvalidTransition(
                from_code,
                to_code,
                f"Order is {source.name.lower()} and can no longer change status.",
            )
        if to_code not in self._transitions.get(from_code, frozenset()):
            raise InvalidTransition(from_code, to_code)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def failing_guard(
        self, order: Order, from_code: str, to_code: str
    ) -> Optional[TransitionGuard]:
        source = self.get(from_code)
        target = self.get(to_code)
        for guard in self._guards:
            if guard.applies(source, target) and not guard.allows(order):
                return guard
        return None

    def check_guards(self, order: Order, from_code: str, to_code: str) -> None:
        """Raise ``InvalidTransition`` with the first failing guard's reason."""
        guard = self.failing_guard(order, from_code, to_code)
        if guard is not None:
            raise InvalidTransition(from_code, to_code, guard.reason)


status_registry = StatusRegistry(STATUS_CATALOG, TRANSITIONS, GUARDS)
