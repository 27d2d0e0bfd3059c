"""Integer billing math for metered sessions.

Every authoritative figure is an integer in the ledger's smallest currency
unit. Decimal text only enters through `to_base_units`/`effective_rate` and
only leaves through `to_display`.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from ..errors import InvalidArgument


def _parse_decimal(value: str | int | Decimal, *, label: str) -> Decimal:
    if isinstance(value, float):
        raise InvalidArgument(f"{label} must be given as text or an integer, not a float")
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidArgument(f"{label} '{value}' is not a decimal number")
    if not parsed.is_finite():
        raise InvalidArgument(f"{label} '{value}' is not finite")
    return parsed


def to_base_units(amount: str | int | Decimal, decimals: int) -> int:
    """Convert a human currency amount ("5.0") into smallest units."""
    parsed = _parse_decimal(amount, label="Amount")
    scaled = parsed.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidArgument(f"Amount '{amount}' has more than {decimals} decimal places")
    return int(scaled)


def to_display(amount: int, decimals: int) -> float:
    """Last-mile conversion of smallest units into a display number."""
    return float(Decimal(amount).scaleb(-decimals))


def effective_rate(rate: str | Decimal, *, currency_decimals: int, usage_decimals: int) -> int:
    """Price per display usage unit -> smallest currency units per raw usage unit.

    0.007 per kWh with 9 currency decimals and 3 usage decimals is
    7_000_000 per kWh, i.e. 7_000 per raw unit (Wh).
    """
    parsed = _parse_decimal(rate, label="Rate")
    if parsed < 0:
        raise InvalidArgument(f"Rate '{rate}' must not be negative")
    per_raw_unit = parsed.scaleb(currency_decimals - usage_decimals)
    if per_raw_unit != per_raw_unit.to_integral_value():
        raise InvalidArgument(
            f"Rate '{rate}' is not representable in whole base units per raw usage unit"
        )
    return int(per_raw_unit)


def accrued_cost(units: int, rate_per_unit: int) -> int:
    return units * rate_per_unit


def refund(deposit: int, final_cost: int) -> int:
    """Unspent deposit, from the figures the ledger reported at settlement."""
    if final_cost < 0:
        raise ValueError(f"final cost {final_cost} is negative")
    if final_cost > deposit:
        raise ValueError(f"final cost {final_cost} exceeds deposit {deposit}")
    return deposit - final_cost


def remaining_deposit(deposit: int, units: int, rate_per_unit: int) -> int:
    return deposit - accrued_cost(units, rate_per_unit)


def can_afford(deposit: int, units: int, rate_per_unit: int) -> bool:
    return accrued_cost(units, rate_per_unit) <= deposit


def target_usage(duration_ms: int, interval_ms: int, increment: int) -> int:
    """Expected usage ceiling if every tick lands on schedule."""
    if interval_ms <= 0:
        raise InvalidArgument("interval_ms must be positive")
    return (duration_ms // interval_ms) * increment
