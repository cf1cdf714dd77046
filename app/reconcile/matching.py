
# app/reconcile/matching.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID

from app.payouts.errors import ReconciliationAmbiguous
from app.payouts.model import Payout, PayoutStatus, ReferenceSource
from app.payouts.store import PayoutStore
from app.reconcile.events import ProviderEvent

logger = logging.getLogger("remodoc.reconcile")

HEURISTIC_CANDIDATE_STATUSES = (PayoutStatus.PROCESSING, PayoutStatus.APPROVED, PayoutStatus.READY)


@dataclass(frozen=True)
class MatchResult:
    payout: Payout
    method: str
    reference_source: ReferenceSource
    candidates: tuple[str, ...] = ()


class MatchStrategy(Protocol):
    name: str

    def match(self, store: PayoutStore, event: ProviderEvent) -> Optional[MatchResult]:
        """
        None when this strategy has nothing to say.
        Raises ReconciliationAmbiguous rather than guessing.
        """
        ...


class ExactReferenceMatch:
    name = "EXACT_REFERENCE"

    def match(self, store: PayoutStore, event: ProviderEvent) -> Optional[MatchResult]:
        for ref in event.references:
            payout = store.find_by_provider_reference(ref)
            if payout is not None:
                return MatchResult(payout=payout, method=self.name, reference_source=ReferenceSource.PROVIDER)
        return None


class PayoutIdMatch:
    """The provider echoed our own payout id (metadata, sender_item_id, generic callback)."""

    name = "PAYOUT_ID"

    def match(self, store: PayoutStore, event: ProviderEvent) -> Optional[MatchResult]:
        if not event.payout_id:
            return None
        try:
            pid = UUID(event.payout_id)
        except ValueError:
            logger.warning(
                "reconcile_bad_payout_id provider=%s payout_id=%r",
                event.provider.value,
                event.payout_id,
            )
            return None
        payout = store.get(pid)
        if payout is None:
            return None
        return MatchResult(payout=payout, method=self.name, reference_source=ReferenceSource.PROVIDER)


class AmountToleranceMatch:
    """
    Best-effort fallback for rails that may omit a stable reference.

    Looks at open payouts (newest first) whose amount is strictly within
    `tolerance` of the reported amount. Exactly one candidate matches;
    several is ambiguous and nothing is applied.
    """

    name = "AMOUNT_TOLERANCE"

    def __init__(self, tolerance: Decimal):
        self.tolerance = Decimal(tolerance)

    def match(self, store: PayoutStore, event: ProviderEvent) -> Optional[MatchResult]:
        if event.amount is None:
            return None

        considered = store.list_by_statuses(HEURISTIC_CANDIDATE_STATUSES)
        if event.currency:
            considered = [p for p in considered if p.currency.upper() == event.currency.upper()]
        within = [p for p in considered if abs(p.amount_due - event.amount) < self.tolerance]

        considered_desc = ",".join(f"{p.id}:{p.amount_due}:{p.status.value}" for p in considered)
        within_ids = tuple(str(p.id) for p in within)

        if not within:
            logger.info(
                "reconcile_heuristic_no_candidate provider=%s reported_amount=%s tolerance=%s considered=[%s]",
                event.provider.value,
                event.amount,
                self.tolerance,
                considered_desc,
            )
            return None

        if len(within) > 1:
            logger.warning(
                "reconcile_heuristic_ambiguous provider=%s reported_amount=%s tolerance=%s matched=[%s] considered=[%s]",
                event.provider.value,
                event.amount,
                self.tolerance,
                ",".join(within_ids),
                considered_desc,
            )
            raise ReconciliationAmbiguous(
                f"{len(within)} payouts within {self.tolerance} of {event.amount}",
                candidate_ids=list(within_ids),
            )

        chosen = within[0]
        logger.warning(
            "reconcile_heuristic_match provider=%s reported_amount=%s tolerance=%s payout_id=%s payout_amount=%s considered=[%s]",
            event.provider.value,
            event.amount,
            self.tolerance,
            chosen.id,
            chosen.amount_due,
            considered_desc,
        )
        return MatchResult(
            payout=chosen,
            method=self.name,
            reference_source=ReferenceSource.HEURISTIC,
            candidates=tuple(str(p.id) for p in considered),
        )
