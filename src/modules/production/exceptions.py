"""Production domain exceptions."""

from __future__ import annotations


class CropPlanNotApprovable(Exception):
    """Only draft crop plans can be approved."""


class CropPlanHasCrops(Exception):
    """A crop plan with crops attached cannot be cancelled."""
