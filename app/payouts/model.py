
# app/payouts/model.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID


class PayoutStatus(str, Enum):
    READY = "READY"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({PayoutStatus.PAID, PayoutStatus.FAILED})
OPEN_STATUSES = frozenset({PayoutStatus.READY, PayoutStatus.APPROVED, PayoutStatus.PROCESSING})


class PayoutProvider(str, Enum):
    STRIPE_CONNECT = "STRIPE_CONNECT"
    PAYPAL_PAYOUTS = "PAYPAL_PAYOUTS"
    MPESA_B2C = "MPESA_B2C"
    BANK_TRANSFER = "BANK_TRANSFER"


class ReferenceSource(str, Enum):
    """
    Where a provider_reference came from. Higher rank wins on overwrite.
    """

    HEURISTIC = "HEURISTIC"
    DISPATCH = "DISPATCH"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"

    @property
    def rank(self) -> int:
        return _REFERENCE_RANK[self]


_REFERENCE_RANK = {
    ReferenceSource.HEURISTIC: 1,
    ReferenceSource.DISPATCH: 2,
    ReferenceSource.PROVIDER: 3,
    ReferenceSource.ADMIN: 4,
}


def reference_may_replace(
    current_ref: Optional[str],
    current_source: Optional[ReferenceSource],
    new_source: ReferenceSource,
) -> bool:
    if not current_ref:
        return True
    if current_source is None:
        return True
    return new_source.rank >= current_source.rank


@dataclass(frozen=True)
class PayoutItem:
    activity_id: str
    description: str
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class NewPayout:
    payee_id: str
    period_start: datetime
    period_end: datetime
    consultations_count: int
    interactions_count: int
    amount_due: Decimal
    currency: str
    notes: Optional[str] = None
    status: PayoutStatus = PayoutStatus.READY
    provider: Optional[PayoutProvider] = None


@dataclass(frozen=True)
class Payout:
    id: UUID
    payee_id: str
    period_start: datetime
    period_end: datetime
    consultations_count: int
    interactions_count: int
    amount_due: Decimal
    currency: str
    status: PayoutStatus
    created_at: datetime
    updated_at: datetime
    provider: Optional[PayoutProvider] = None
    provider_reference: Optional[str] = None
    reference_source: Optional[ReferenceSource] = None
    approved_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    dispatch_claimed_at: Optional[datetime] = None
    notes: Optional[str] = None
    items: tuple[PayoutItem, ...] = field(default_factory=tuple)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, *, include_items: bool = True) -> dict:
        out = {
            "id": str(self.id),
            "payee_id": self.payee_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "consultations_count": self.consultations_count,
            "interactions_count": self.interactions_count,
            "amount_due": str(self.amount_due),
            "currency": self.currency,
            "status": self.status.value,
            "provider": self.provider.value if self.provider else None,
            "provider_reference": self.provider_reference,
            "reference_source": self.reference_source.value if self.reference_source else None,
            "approved_by": self.approved_by,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "dispatch_claimed_at": self.dispatch_claimed_at.isoformat() if self.dispatch_claimed_at else None,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_items:
            out["items"] = [
                {
                    "activity_id": it.activity_id,
                    "description": it.description,
                    "amount": str(it.amount),
                    "currency": it.currency,
                }
                for it in self.items
            ]
        return out


def append_note(existing: Optional[str], line: str) -> str:
    if not existing:
        return line
    return f"{existing}\n{line}"


def format_note(event: str, fields: dict[str, Any], at: datetime) -> str:
    """One audit line: `[timestamp] event {json}`."""
    body = json.dumps({k: v for k, v in fields.items() if v is not None}, sort_keys=True, default=str)
    return f"[{at.isoformat()}] {event} {body}"
