"""
Flowstream invariant layer: session snapshot verification.

All checks are pure functions of a published snapshot.
No mutations. No side effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..session.snapshot import SessionSnapshot


@dataclass
class InvariantResult:
    name: str
    passed: bool
    detail: Optional[str] = None


def check_accrued_within_deposit(snapshot: "SessionSnapshot") -> InvariantResult:
    """accrued_cost never exceeds the deposit, and matches usage * rate while streaming."""
    if snapshot.accrued_cost > snapshot.deposit_amount:
        return InvariantResult(
            name="accrued_within_deposit",
            passed=False,
            detail=f"accrued={snapshot.accrued_cost} > deposit={snapshot.deposit_amount}",
        )
    if snapshot.status == "Streaming":
        expected = snapshot.total_usage * snapshot.rate_per_unit
        if snapshot.accrued_cost != expected:
            return InvariantResult(
                name="accrued_within_deposit",
                passed=False,
                detail=f"accrued={snapshot.accrued_cost} != usage*rate={expected}",
            )
    return InvariantResult(name="accrued_within_deposit", passed=True)


def check_settlement_balances(snapshot: "SessionSnapshot") -> InvariantResult:
    """refund + settled cost == deposit once a refund has been recorded."""
    if snapshot.refund_amount is None:
        return InvariantResult(name="settlement_balances", passed=True)
    total = snapshot.refund_amount + snapshot.accrued_cost
    if total != snapshot.deposit_amount:
        return InvariantResult(
            name="settlement_balances",
            passed=False,
            detail=f"refund={snapshot.refund_amount} + cost={snapshot.accrued_cost} != deposit={snapshot.deposit_amount}",
        )
    return InvariantResult(name="settlement_balances", passed=True)


def check_identifiers_consistent(snapshot: "SessionSnapshot") -> InvariantResult:
    """Idle holds no identifiers; every other state holds all of them; connected only while streaming."""
    ids = (snapshot.charger_id, snapshot.session_account_id, snapshot.merchant_id)
    held = [v is not None for v in ids]

    if snapshot.status == "Idle" and any(held):
        return InvariantResult(name="identifiers_consistent", passed=False, detail="Idle snapshot still holds identifiers")
    if snapshot.status != "Idle" and not all(held):
        return InvariantResult(
            name="identifiers_consistent",
            passed=False,
            detail=f"{snapshot.status} snapshot is missing identifiers",
        )
    if snapshot.connected and snapshot.status != "Streaming":
        return InvariantResult(
            name="identifiers_consistent",
            passed=False,
            detail=f"connected=True while {snapshot.status}",
        )
    return InvariantResult(name="identifiers_consistent", passed=True)


def check_no_negative_values(snapshot: "SessionSnapshot") -> InvariantResult:
    values = {
        "total_usage": snapshot.total_usage,
        "deposit_amount": snapshot.deposit_amount,
        "accrued_cost": snapshot.accrued_cost,
        "refund_amount": snapshot.refund_amount,
        "wallet_balance": snapshot.wallet_balance,
    }
    negative = [f"{k}={v}" for k, v in values.items() if v is not None and v < 0]
    if negative:
        return InvariantResult(name="no_negative_values", passed=False, detail=f"Violations: {'; '.join(negative)}")
    return InvariantResult(name="no_negative_values", passed=True)


def run_all_checks(snapshot: "SessionSnapshot") -> list[InvariantResult]:
    """Run all invariant checks and return results."""
    return [
        check_accrued_within_deposit(snapshot),
        check_settlement_balances(snapshot),
        check_identifiers_consistent(snapshot),
        check_no_negative_values(snapshot),
    ]
