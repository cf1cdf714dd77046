
# app/payouts/controller.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional, Union
from uuid import UUID

from app.payouts.commands import Approve, BulkCommand, ManualOverride, Trigger
from app.payouts.errors import (
    ConflictError,
    DispatchError,
    NotFoundError,
    PayoutError,
    ValidationError,
)
from app.payouts.model import (
    NewPayout,
    Payout,
    PayoutProvider,
    PayoutStatus,
    ReferenceSource,
    format_note,
)
from app.payouts.state_machine import assert_can_approve, assert_can_trigger
from app.payouts.store import PayoutStore
from app.providers.base import DispatchResult, TransferDispatcher
from app.sources.payees import PayeeDirectory
from services.metrics import increment_dispatch
from services.redaction import redact_dict

logger = logging.getLogger("remodoc.payouts")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_payout_id(raw: Any) -> UUID:
    if isinstance(raw, UUID):
        return raw
    try:
        return UUID(str(raw).strip())
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"Invalid payout id: {raw!r}", reason="INVALID_PAYOUT_ID")


def default_provider_for(currency: str) -> PayoutProvider:
    if (currency or "").strip().upper() == "KES":
        return PayoutProvider.MPESA_B2C
    return PayoutProvider.STRIPE_CONNECT


@dataclass(frozen=True)
class TriggerOutcome:
    payout: Payout
    provider: PayoutProvider
    provider_reference: Optional[str]
    initial_status: PayoutStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "payout": self.payout.to_dict(include_items=False),
            "provider": self.provider.value,
            "provider_reference": self.provider_reference,
            "initial_status": self.initial_status.value,
        }


@dataclass(frozen=True)
class BulkItemResult:
    ok: bool
    status: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None
    current_status: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ok": self.ok}
        if self.status:
            out["status"] = self.status
        if not self.ok:
            out["error"] = self.error
            out["message"] = self.message
            if self.current_status:
                out["current_status"] = self.current_status
        return out


class PayoutLifecycleController:
    """
    Admin-driven transitions: approve, trigger (dispatch) and manual override.

    PAID/FAILED are never produced here except through manual override; the
    provider confirmation path lives in the settlement reconciler.
    """

    def __init__(
        self,
        store: PayoutStore,
        payees: PayeeDirectory,
        dispatchers: Mapping[PayoutProvider, TransferDispatcher],
        *,
        settlement_currency: str,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._payees = payees
        self._dispatchers = dict(dispatchers)
        self._currency = settlement_currency
        self._clock = clock

    # ==========================================================
    # Single-payout actions
    # ==========================================================

    def _load(self, payout_id: UUID) -> Payout:
        payout = self._store.get(payout_id)
        if payout is None:
            raise NotFoundError(f"Payout {payout_id} not found")
        return payout

    def _conflict_after_race(self, payout_id: UUID, action: str) -> ConflictError:
        current = self._load(payout_id)
        return ConflictError(
            f"Cannot {action} payout in status {current.status.value}",
            current_status=current.status.value,
        )

    def get(self, payout_id: Any) -> Payout:
        return self._load(parse_payout_id(payout_id))

    def approve(self, payout_id: Any, admin_id: str) -> Payout:
        pid = parse_payout_id(payout_id)
        payout = self._load(pid)
        assert_can_approve(payout.status)

        updated = self._store.transition(
            pid,
            from_statuses={PayoutStatus.READY},
            to_status=PayoutStatus.APPROVED,
            approved_by=admin_id,
            note=format_note("approved", {"admin_id": admin_id}, self._clock()),
        )
        if updated is None:
            raise self._conflict_after_race(pid, "approve")

        self._store.record_audit(
            actor=admin_id,
            action="PAYOUT_APPROVED",
            payout_id=pid,
            metadata={"status_before": payout.status.value},
        )
        logger.info("payout_approved payout_id=%s admin_id=%s", pid, admin_id)
        return updated

    def trigger(self, payout_id: Any, admin_id: str) -> TriggerOutcome:
        pid = parse_payout_id(payout_id)
        payout = self._load(pid)
        assert_can_trigger(payout.status)

        if payout.status == PayoutStatus.READY:
            payout = self.approve(pid, admin_id)

        claimed = self._store.claim_dispatch(pid, admin_id)
        if claimed is None:
            current = self._load(pid)
            if current.status == PayoutStatus.APPROVED:
                raise ConflictError(
                    "Payout dispatch is already in progress",
                    current_status=current.status.value,
                    reason="DISPATCH_IN_PROGRESS",
                )
            raise ConflictError(
                f"Cannot trigger payout in status {current.status.value}",
                current_status=current.status.value,
            )
        payout = claimed

        provider = payout.provider or default_provider_for(payout.currency)
        try:
            result = self._dispatch(payout, provider)
        except DispatchError as exc:
            self._store.release_dispatch(pid)
            increment_dispatch(provider.value, "error")
            logger.warning(
                "payout_dispatch_failed payout_id=%s provider=%s reason=%s message=%s",
                pid,
                provider.value,
                exc.reason,
                exc.message,
            )
            # stays APPROVED so the admin can see it and retry
            self._store.append_note(
                pid,
                format_note(
                    "dispatch_failed",
                    {"provider": provider.value, "reason": exc.reason, "admin_id": admin_id},
                    self._clock(),
                ),
            )
            self._store.record_audit(
                actor=admin_id,
                action="PAYOUT_DISPATCH_FAILED",
                payout_id=pid,
                metadata={"provider": provider.value, "reason": exc.reason, "message": exc.message},
            )
            raise

        increment_dispatch(provider.value, "ok")
        note = format_note(
            "dispatched",
            {
                "provider": provider.value,
                "provider_reference": result.provider_reference,
                "initial_status": result.initial_status.value,
                "admin_id": admin_id,
            },
            self._clock(),
        )
        updated = self._store.transition(
            pid,
            from_statuses={PayoutStatus.APPROVED},
            to_status=PayoutStatus.PROCESSING,
            provider_reference=result.provider_reference,
            reference_source=ReferenceSource.DISPATCH,
            provider=provider,
            note=note,
        )

        if updated is None:
            current = self._load(pid)
            if current.status in (PayoutStatus.PROCESSING, PayoutStatus.PAID, PayoutStatus.FAILED):
                # a provider callback overtook the dispatch response
                logger.info(
                    "payout_dispatch_overtaken payout_id=%s provider=%s status=%s provider_reference=%s",
                    pid,
                    provider.value,
                    current.status.value,
                    result.provider_reference,
                )
                self._store.append_note(pid, note)
                updated = current
            else:
                logger.error(
                    "payout_dispatched_but_state_changed payout_id=%s provider=%s status=%s provider_reference=%s",
                    pid,
                    provider.value,
                    current.status.value,
                    result.provider_reference,
                )
                raise ConflictError(
                    f"Transfer dispatched but payout is now {current.status.value}",
                    current_status=current.status.value,
                )

        self._store.record_audit(
            actor=admin_id,
            action="PAYOUT_TRIGGERED",
            payout_id=pid,
            metadata={
                "provider": provider.value,
                "provider_reference": result.provider_reference,
                "response": redact_dict(result.response or {}),
            },
        )
        logger.info(
            "payout_triggered payout_id=%s provider=%s provider_reference=%s admin_id=%s",
            pid,
            provider.value,
            result.provider_reference,
            admin_id,
        )
        return TriggerOutcome(
            payout=updated,
            provider=provider,
            provider_reference=result.provider_reference,
            initial_status=result.initial_status,
        )

    def _dispatch(self, payout: Payout, provider: PayoutProvider) -> DispatchResult:
        dispatcher = self._dispatchers.get(provider)
        if dispatcher is None:
            raise DispatchError(f"Provider {provider.value} is not configured", reason="PROVIDER_NOT_CONFIGURED")

        payee = self._payees.get_payee(payout.payee_id)
        if payee is None:
            raise DispatchError(f"Payee {payout.payee_id} not found", reason="PAYEE_DESTINATION_MISSING")

        return dispatcher.initiate(payout.id, payee, payout.amount_due, payout.currency)

    def manual_override(
        self,
        payout_id: Any,
        admin_id: str,
        *,
        status: PayoutStatus,
        reason: str,
        provider_reference: Optional[str] = None,
    ) -> Payout:
        pid = parse_payout_id(payout_id)
        before = self._load(pid)
        note = format_note(
            "manual_override",
            {
                "admin_id": admin_id,
                "from": before.status.value,
                "to": status.value,
                "reason": reason,
                "provider_reference": provider_reference,
            },
            self._clock(),
        )
        updated = self._store.override(
            pid,
            status=status,
            provider_reference=provider_reference,
            note=note,
            actor=admin_id,
        )
        if updated is None:
            raise NotFoundError(f"Payout {pid} not found")

        logger.warning(
            "payout_manual_override payout_id=%s admin_id=%s from=%s to=%s reason=%s",
            pid,
            admin_id,
            before.status.value,
            status.value,
            reason,
        )
        return updated

    def execute(self, payout_id: Any, command: Union[Approve, Trigger, ManualOverride], admin_id: str) -> dict[str, Any]:
        if isinstance(command, Approve):
            return self.approve(payout_id, admin_id).to_dict()
        if isinstance(command, Trigger):
            return self.trigger(payout_id, admin_id).to_dict()
        if isinstance(command, ManualOverride):
            return self.manual_override(
                payout_id,
                admin_id,
                status=command.status,
                reason=command.reason,
                provider_reference=command.provider_reference,
            ).to_dict()
        raise ValidationError(f"Unsupported command {type(command).__name__}", reason="INVALID_COMMAND")

    # ==========================================================
    # Bulk
    # ==========================================================

    def bulk(self, command: BulkCommand, admin_id: str) -> dict[str, BulkItemResult]:
        """
        Applies the single-payout action to each id independently.
        A failing id never aborts or rolls back its siblings.
        """
        results: dict[str, BulkItemResult] = {}
        for raw_id in dict.fromkeys(command.ids):
            try:
                if command.action == "approve":
                    payout = self.approve(raw_id, admin_id)
                else:
                    payout = self.trigger(raw_id, admin_id).payout
                results[raw_id] = BulkItemResult(ok=True, status=payout.status.value)
            except PayoutError as exc:
                results[raw_id] = BulkItemResult(
                    ok=False,
                    error=exc.reason,
                    message=exc.message,
                    current_status=getattr(exc, "current_status", None),
                )
            except Exception as exc:
                logger.exception("payout_bulk_item_failed action=%s payout_id=%s", command.action, raw_id)
                results[raw_id] = BulkItemResult(
                    ok=False,
                    error="INTERNAL_ERROR",
                    message=f"{type(exc).__name__}",
                )

        logger.info(
            "payout_bulk_done action=%s total=%s ok=%s failed=%s admin_id=%s",
            command.action,
            len(results),
            sum(1 for r in results.values() if r.ok),
            sum(1 for r in results.values() if not r.ok),
            admin_id,
        )
        return results

    # ==========================================================
    # Manual creation
    # ==========================================================

    def create_manual_payout(
        self,
        *,
        admin_id: str,
        payee_id: str,
        period_start: datetime,
        period_end: datetime,
        amount_due: Decimal,
        currency: Optional[str] = None,
        provider: Optional[PayoutProvider] = None,
        notes: Optional[str] = None,
    ) -> Payout:
        if not (payee_id or "").strip():
            raise ValidationError("payee_id is required", reason="INVALID_PAYEE_ID")
        if period_start > period_end:
            raise ValidationError("period_start is after period_end", reason="INVALID_PERIOD")
        if amount_due < 0:
            raise ValidationError("amount_due must be non-negative", reason="INVALID_AMOUNT")

        new = NewPayout(
            payee_id=payee_id.strip(),
            period_start=period_start,
            period_end=period_end,
            consultations_count=0,
            interactions_count=0,
            amount_due=amount_due,
            currency=(currency or self._currency).strip().upper(),
            notes=notes or "Manual payout created by admin",
            provider=provider,
        )
        payout = self._store.create_payout(new, [])
        if payout is None:
            raise ConflictError(
                f"A payout already exists for payee {payee_id} and this period",
                reason="PAYOUT_EXISTS",
            )

        self._store.record_audit(
            actor=admin_id,
            action="PAYOUT_CREATED_MANUAL",
            payout_id=payout.id,
            metadata={"amount_due": str(amount_due), "currency": payout.currency},
        )
        logger.info("payout_created_manual payout_id=%s payee_id=%s admin_id=%s", payout.id, payee_id, admin_id)
        return payout
