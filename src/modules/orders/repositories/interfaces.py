"""Order repository interface.

Extends ``IRepository[Order]`` with methods required by the Order
aggregate: atomic creation with items and packaging, status history
tracking, compare-and-swap status writes and idempotency-key look-up.

The Service Layer depends exclusively on this contract (DIP).
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository, Queryable

if TYPE_CHECKING:
    from modules.orders.models import Order, OrderStatusHistory


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root.

    The Order aggregate includes OrderItem / OrderPackaging children and
    OrderStatusHistory records.  Mutations must be atomic.
    """

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items and packaging atomically.

        ``data`` holds the Order field values plus ``items`` (list of dicts
        with ``product_id``, ``quantity``, ``unit_price`` and optionally
        ``price_variation_id``) and ``packaging`` (list of dicts with
        ``packaging_type_id``, ``quantity``, ``notes``).
        """

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with prefetched items and status history."""

    @abstractmethod
    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order holding a row-level lock."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> Queryable[Order]:
        """List orders with optional filters."""

    @abstractmethod
    def compare_and_set_status(
        self, order_id: UUID, expected: str, new_status: str
    ) -> bool:
        """Write ``new_status`` only if the stored status is still ``expected``."""

    @abstractmethod
    def add_history(
        self,
        order_id: UUID,
        old_status: Optional[str],
        new_status: str,
        notes: str = "",
        actor_id: Optional[int] = None,
        source_event: Optional[str] = None,
        manual: bool = True,
    ) -> OrderStatusHistory:
        """Record a status change in the order's audit trail."""

    @abstractmethod
    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        """Retrieve an order by its idempotency key."""

    @abstractmethod
    def exists_generated(self, template_id: UUID, delivery_date: date) -> bool:
        """Whether the template already produced an order for this delivery date."""
