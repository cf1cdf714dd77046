
# app/providers/base.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Protocol
from uuid import UUID

from app.payouts.model import PayoutStatus
from app.sources.payees import Payee


@dataclass(frozen=True)
class DispatchResult:
    provider_reference: Optional[str]
    initial_status: PayoutStatus = PayoutStatus.PROCESSING
    response: Optional[dict[str, Any]] = None


class TransferDispatcher(Protocol):
    """
    Starts a transfer on one provider rail.
    Raises DispatchError on network/auth/rejection; never returns a failure value.
    """

    provider: str

    def initiate(self, payout_id: UUID, payee: Payee, amount: Decimal, currency: str) -> DispatchResult: ...
