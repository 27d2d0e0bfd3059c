"""Billing calculator: pure integer conversions between usage and currency."""

from .calculator import (
    accrued_cost,
    can_afford,
    effective_rate,
    refund,
    remaining_deposit,
    target_usage,
    to_base_units,
    to_display,
)

__all__ = [
    "accrued_cost",
    "can_afford",
    "effective_rate",
    "refund",
    "remaining_deposit",
    "target_usage",
    "to_base_units",
    "to_display",
]
