

# app/payouts/state_machine.py
from __future__ import annotations

from app.payouts.errors import ConflictError
from app.payouts.model import PayoutStatus


APPROVABLE = frozenset({PayoutStatus.READY})
TRIGGERABLE = frozenset({PayoutStatus.READY, PayoutStatus.APPROVED})

# Transitions reachable through admin actions and provider confirmations.
# Manual override bypasses this table.
ALLOWED = {
    PayoutStatus.READY: {PayoutStatus.APPROVED, PayoutStatus.PROCESSING, PayoutStatus.PAID, PayoutStatus.FAILED},
    PayoutStatus.APPROVED: {PayoutStatus.PROCESSING, PayoutStatus.PAID, PayoutStatus.FAILED},
    # PROCESSING -> PROCESSING refreshes reference/notes on an in-flight report
    PayoutStatus.PROCESSING: {PayoutStatus.PROCESSING, PayoutStatus.PAID, PayoutStatus.FAILED},
    PayoutStatus.PAID: set(),
    PayoutStatus.FAILED: set(),
}


def assert_can_approve(status: PayoutStatus) -> None:
    if status not in APPROVABLE:
        raise ConflictError(
            f"Cannot approve payout in status {status.value}",
            current_status=status.value,
        )


def assert_can_trigger(status: PayoutStatus) -> None:
    if status not in TRIGGERABLE:
        raise ConflictError(
            f"Cannot trigger payout in status {status.value}",
            current_status=status.value,
        )


def sources_for(new: PayoutStatus) -> frozenset[PayoutStatus]:
    """States from which `new` may be reached (used as the conditional-update guard)."""
    return frozenset(old for old, targets in ALLOWED.items() if new in targets)
