
# app/reconcile/reconciler.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Mapping, Optional, Sequence

from app.payouts.errors import ConflictError, ReconciliationAmbiguous
from app.payouts.model import PayoutProvider, PayoutStatus, format_note
from app.payouts.state_machine import sources_for
from app.reconcile.events import ProviderEvent
from app.reconcile.matching import (
    AmountToleranceMatch,
    ExactReferenceMatch,
    MatchResult,
    MatchStrategy,
    PayoutIdMatch,
)
from app.payouts.store import PayoutStore
from services.metrics import increment_webhook_event

logger = logging.getLogger("remodoc.reconcile")


class ReconcileOutcome(str, Enum):
    APPLIED = "APPLIED"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_TERMINAL = "ALREADY_TERMINAL"
    AMBIGUOUS = "AMBIGUOUS"
    UNMAPPED_STATUS = "UNMAPPED_STATUS"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    payout_id: Optional[str] = None
    status_before: Optional[PayoutStatus] = None
    status_after: Optional[PayoutStatus] = None
    method: Optional[str] = None
    candidates: tuple[str, ...] = ()

    @property
    def applied(self) -> bool:
        return self.outcome == ReconcileOutcome.APPLIED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "payoutId": self.payout_id,
            "statusBefore": self.status_before.value if self.status_before else None,
            "statusAfter": self.status_after.value if self.status_after else None,
            "method": self.method,
            "candidates": list(self.candidates),
        }


def default_strategies(tolerance: Decimal) -> dict[PayoutProvider, list[MatchStrategy]]:
    """
    Exact reference first everywhere. Rails that echo our payout id fall back
    to it; M-Pesa may omit its ids and falls back to the amount heuristic.
    """
    return {
        PayoutProvider.STRIPE_CONNECT: [ExactReferenceMatch(), PayoutIdMatch()],
        PayoutProvider.PAYPAL_PAYOUTS: [ExactReferenceMatch(), PayoutIdMatch()],
        PayoutProvider.BANK_TRANSFER: [ExactReferenceMatch(), PayoutIdMatch()],
        PayoutProvider.MPESA_B2C: [ExactReferenceMatch(), AmountToleranceMatch(tolerance)],
    }


class SettlementReconciler:
    """
    Applies provider settlement callbacks to payouts.

    Every status write is the store's conditional transition, so a callback
    racing a dispatch, an admin override or a duplicate delivery resolves to
    exactly one winner; terminal payouts are never reopened.
    """

    def __init__(
        self,
        store: PayoutStore,
        strategies: Mapping[PayoutProvider, Sequence[MatchStrategy]],
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.strategies = strategies
        self.clock = clock

    def _match(self, event: ProviderEvent) -> Optional[MatchResult]:
        for strategy in self.strategies.get(event.provider, ()):
            found = strategy.match(self.store, event)
            if found is not None:
                return found
        return None

    def reconcile(self, event: ProviderEvent) -> ReconcileResult:
        result = self._reconcile(event)
        increment_webhook_event(event.provider.value, result.outcome.value)
        logger.info(
            "reconcile provider=%s status_raw=%s outcome=%s payout_id=%s method=%s before=%s after=%s",
            event.provider.value,
            event.status_raw,
            result.outcome.value,
            result.payout_id,
            result.method,
            result.status_before.value if result.status_before else None,
            result.status_after.value if result.status_after else None,
        )
        return result

    def _reconcile(self, event: ProviderEvent) -> ReconcileResult:
        if event.mapped_status is None:
            logger.warning(
                "reconcile_unmapped_status provider=%s status_raw=%r event_type=%s refs=%s",
                event.provider.value,
                event.status_raw,
                event.event_type,
                ",".join(event.references),
            )
            return ReconcileResult(outcome=ReconcileOutcome.UNMAPPED_STATUS)

        try:
            found = self._match(event)
        except ReconciliationAmbiguous as exc:
            return ReconcileResult(
                outcome=ReconcileOutcome.AMBIGUOUS,
                method=AmountToleranceMatch.name,
                candidates=tuple(exc.candidate_ids),
            )

        if found is None:
            logger.warning(
                "reconcile_not_found provider=%s refs=%s payout_id_hint=%s amount=%s",
                event.provider.value,
                ",".join(event.references),
                event.payout_id,
                event.amount,
            )
            return ReconcileResult(outcome=ReconcileOutcome.NOT_FOUND)

        payout = found.payout
        pid = str(payout.id)
        if payout.is_terminal:
            return ReconcileResult(
                outcome=ReconcileOutcome.ALREADY_TERMINAL,
                payout_id=pid,
                status_before=payout.status,
                status_after=payout.status,
                method=found.method,
                candidates=found.candidates,
            )

        target = event.mapped_status
        note = format_note(
            "provider_callback",
            {
                "provider": event.provider.value,
                "method": found.method,
                "status_raw": event.status_raw,
                "from": payout.status.value,
                "to": target.value,
                "provider_reference": event.provider_reference,
                **event.identifiers,
            },
            self.clock(),
        )

        ref = event.provider_reference
        try:
            updated = self.store.transition(
                payout.id,
                from_statuses=sources_for(target),
                to_status=target,
                provider_reference=ref,
                reference_source=found.reference_source if ref else None,
                note=note,
            )
        except ConflictError as exc:
            if exc.reason != "PROVIDER_REFERENCE_IN_USE":
                raise
            logger.warning(
                "reconcile_reference_in_use provider=%s payout_id=%s provider_reference=%s",
                event.provider.value,
                pid,
                ref,
            )
            updated = self.store.transition(
                payout.id,
                from_statuses=sources_for(target),
                to_status=target,
                note=note,
            )

        if updated is None:
            # lost the race; report what the winner left behind
            current = self.store.get(payout.id)
            if current is not None and current.is_terminal:
                return ReconcileResult(
                    outcome=ReconcileOutcome.ALREADY_TERMINAL,
                    payout_id=pid,
                    status_before=payout.status,
                    status_after=current.status,
                    method=found.method,
                    candidates=found.candidates,
                )
            return ReconcileResult(outcome=ReconcileOutcome.NOT_FOUND, payout_id=pid, method=found.method)

        return ReconcileResult(
            outcome=ReconcileOutcome.APPLIED,
            payout_id=pid,
            status_before=payout.status,
            status_after=updated.status,
            method=found.method,
            candidates=found.candidates,
        )
