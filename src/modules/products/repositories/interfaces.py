"""Product repository interface."""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.products.models import PackagingType, PriceVariation, Product


class IProductRepository(IRepository["Product"]):
    """Repository contract for the Product catalog."""

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Product]:
        """List products with optional filters."""

    @abstractmethod
    def get_by_sku(self, sku: str) -> Optional[Product]:
        """Retrieve a product by SKU."""

    @abstractmethod
    def get_variation(self, id: str) -> Optional[PriceVariation]:
        """Retrieve a price variation by primary key."""

    @abstractmethod
    def get_packaging_type(self, id: str) -> Optional[PackagingType]:
        """Retrieve a packaging type by primary key."""
