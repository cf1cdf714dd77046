
# app/payouts/store.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol, Sequence
from uuid import UUID

from app.payouts.model import (
    NewPayout,
    Payout,
    PayoutItem,
    PayoutProvider,
    PayoutStatus,
    ReferenceSource,
)


@dataclass(frozen=True)
class PayoutFilter:
    payee_id: Optional[str] = None
    status: Optional[PayoutStatus] = None
    provider: Optional[PayoutProvider] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


class PayoutStore(Protocol):
    """
    Persistence for the payout aggregate.

    Every status write is a single conditional update guarded on the current
    status; callers learn whether it applied from the return value.
    """

    def create_payout(self, new: NewPayout, items: Sequence[PayoutItem]) -> Optional[Payout]:
        """Atomically insert payout + items. None when (payee, period) already exists."""
        ...

    def get(self, payout_id: UUID) -> Optional[Payout]: ...

    def find_by_provider_reference(self, provider_reference: str) -> Optional[Payout]: ...

    def list_payouts(self, flt: PayoutFilter, *, limit: int, skip: int) -> tuple[list[Payout], int]: ...

    def list_by_statuses(self, statuses: Iterable[PayoutStatus]) -> list[Payout]:
        """Newest first."""
        ...

    def transition(
        self,
        payout_id: UUID,
        *,
        from_statuses: Iterable[PayoutStatus],
        to_status: PayoutStatus,
        provider_reference: Optional[str] = None,
        reference_source: Optional[ReferenceSource] = None,
        provider: Optional[PayoutProvider] = None,
        approved_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Optional[Payout]:
        """
        Apply only if the current status is in `from_statuses`.
        Sets processed_at when `to_status` is terminal. Returns the updated
        payout, or None when the guard did not match.
        """
        ...

    def claim_dispatch(self, payout_id: UUID, claimed_by: str) -> Optional[Payout]:
        """
        Mark an APPROVED payout as being dispatched. At most one caller gets the
        payout back; everyone else gets None until the claim is released.
        Any status transition or override clears the claim.
        """
        ...

    def release_dispatch(self, payout_id: UUID) -> bool: ...

    def append_note(self, payout_id: UUID, note: str) -> bool: ...

    def override(
        self,
        payout_id: UUID,
        *,
        status: PayoutStatus,
        provider_reference: Optional[str],
        note: str,
        actor: str,
    ) -> Optional[Payout]: ...

    def record_audit(
        self,
        *,
        actor: str,
        action: str,
        payout_id: Optional[UUID],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None: ...
