"""Production planning DTOs (Pydantic v2)."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class CropRequirement(BaseModel):
    """What one variety of an order needs from the grow room."""

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    quantity_ordered: Decimal
    grams_per_unit: Decimal
    grams_needed: Decimal
    trays_needed: int
    tray_yield_grams: Decimal
    plant_by_date: date
    expected_harvest_date: date

    def calculation_details(self) -> dict:
        return {
            "calculation_method": "automatic_from_order",
            "total_quantity_ordered": str(self.quantity_ordered),
            "base_grams_per_unit": str(self.grams_per_unit),
            "tray_yield_grams": str(self.tray_yield_grams),
        }
