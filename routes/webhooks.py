# routes/webhooks.py
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from app.payouts.errors import SignatureVerificationFailed, ValidationError
from app.payouts.model import PayoutProvider
from app.reconcile.events import PARSERS
from app.reconcile.reconciler import SettlementReconciler
from app.webhooks.repository import WebhookEventLog, WebhookEventRecord
from app.webhooks.signatures import (
    PayPalWebhookVerifier,
    verify_hmac_signature,
    verify_stripe_signature,
)
from deps.services import get_event_log, get_paypal_verifier, get_reconciler
from services.metrics import increment_webhook_event
from services.observability import resolve_request_id
from services.redaction import redact_dict, redact_text
from settings import settings

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])
logger = logging.getLogger("remodoc.webhooks")

Verifier = Callable[[bytes, Mapping[str, str]], tuple[bool, Optional[str]]]


def _stripe_verifier() -> tuple[bool, Verifier]:
    secret = settings.STRIPE_WEBHOOK_SECRET
    return bool(secret.strip()), lambda raw, headers: verify_stripe_signature(
        raw=raw,
        signature_header=headers.get("Stripe-Signature"),
        secret=secret,
        tolerance_s=settings.STRIPE_WEBHOOK_TOLERANCE_S,
    )


def _paypal_verifier(verifier: PayPalWebhookVerifier) -> Callable[[], tuple[bool, Verifier]]:
    return lambda: (verifier.configured, verifier.verify)


def _mpesa_verifier() -> tuple[bool, Verifier]:
    secret = settings.MPESA_WEBHOOK_SECRET
    return bool(secret.strip()), lambda raw, headers: verify_hmac_signature(
        raw=raw,
        signature_header=headers.get("X-Mpesa-Signature"),
        secret=secret,
    )


def _generic_verifier() -> tuple[bool, Verifier]:
    secret = settings.BANK_WEBHOOK_SECRET
    return bool(secret.strip()), lambda raw, headers: verify_hmac_signature(
        raw=raw,
        signature_header=headers.get("X-Signature"),
        secret=secret,
    )


def _resolve_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", None) or resolve_request_id(req.headers)


async def _handle_payout_webhook(
    req: Request,
    *,
    provider: PayoutProvider,
    verifier: Callable[[], tuple[bool, Verifier]],
    reconciler: SettlementReconciler,
    event_log: WebhookEventLog,
) -> dict[str, Any]:
    raw = await req.body()
    # verification, reconciliation and the event log all block on I/O
    return await run_in_threadpool(
        _process_payout_webhook,
        raw,
        headers=req.headers,
        request_id=_resolve_request_id(req),
        path=str(req.url.path),
        provider=provider,
        verifier=verifier,
        reconciler=reconciler,
        event_log=event_log,
    )


def _process_payout_webhook(
    raw: bytes,
    *,
    headers: Mapping[str, str],
    request_id: str,
    path: str,
    provider: PayoutProvider,
    verifier: Callable[[], tuple[bool, Verifier]],
    reconciler: SettlementReconciler,
    event_log: WebhookEventLog,
) -> dict[str, Any]:
    body_raw_str = raw.decode("utf-8", errors="replace")

    def _record(outcome: str, **fields: Any) -> None:
        event_log.record(
            WebhookEventRecord(
                provider=provider.value,
                path=path,
                request_id=request_id,
                outcome=outcome,
                **fields,
            )
        )

    # -----------------------
    # Authenticate
    # -----------------------
    configured, verify = verifier()
    signature_valid: Optional[bool]
    if not configured:
        if settings.WEBHOOKS_ALLOW_UNSIGNED and not settings.is_production:
            logger.warning(
                "webhook_unsigned_accepted request_id=%s provider=%s env=%s",
                request_id,
                provider.value,
                settings.ENV,
            )
            signature_valid = None
        else:
            logger.error("webhook_secret_missing request_id=%s provider=%s", request_id, provider.value)
            _record(
                "REJECTED",
                signature_valid=False,
                signature_error="WEBHOOK_SECRET_NOT_CONFIGURED",
                body_raw=redact_text(body_raw_str),
                reason="WEBHOOK_SECRET_NOT_CONFIGURED",
            )
            increment_webhook_event(provider.value, "REJECTED")
            raise HTTPException(
                status_code=500,
                detail={"error": "WEBHOOK_SECRET_NOT_CONFIGURED", "provider": provider.value},
            )
    else:
        ok, sig_err = verify(raw, headers)
        if not ok:
            logger.warning(
                "webhook_signature_rejected request_id=%s provider=%s reason=%s",
                request_id,
                provider.value,
                sig_err,
            )
            _record(
                "REJECTED",
                signature_valid=False,
                signature_error=sig_err,
                body_raw=redact_text(body_raw_str),
                reason=sig_err,
            )
            increment_webhook_event(provider.value, "REJECTED")
            raise SignatureVerificationFailed(
                f"{provider.value} webhook signature rejected",
                reason=sig_err or "INVALID_SIGNATURE",
            )
        signature_valid = True

    # -----------------------
    # Parse
    # -----------------------
    try:
        payload = json.loads(body_raw_str) if body_raw_str.strip() else None
    except json.JSONDecodeError:
        payload = None

    if payload is None:
        _record(
            "IGNORED",
            signature_valid=signature_valid,
            body_raw=redact_text(body_raw_str),
            reason="INVALID_JSON",
        )
        increment_webhook_event(provider.value, "IGNORED")
        return {"ok": True, "provider": provider.value, "ignored": True, "reason": "INVALID_JSON"}

    stored_body = redact_dict(payload) if isinstance(payload, dict) else {"_": payload}

    try:
        event = PARSERS[provider](payload)
    except ValidationError as exc:
        logger.warning(
            "webhook_unparseable request_id=%s provider=%s reason=%s message=%s",
            request_id,
            provider.value,
            exc.reason,
            exc.message,
        )
        _record("IGNORED", signature_valid=signature_valid, body=stored_body, reason=exc.reason)
        increment_webhook_event(provider.value, "IGNORED")
        return {"ok": True, "provider": provider.value, "ignored": True, "reason": exc.reason}

    # -----------------------
    # Reconcile
    # -----------------------
    result = reconciler.reconcile(event)

    logger.info(
        "webhook_received request_id=%s provider=%s event_type=%s provider_ref=%s status_raw=%s outcome=%s payout_id=%s",
        request_id,
        provider.value,
        event.event_type,
        redact_text(event.provider_reference or ""),
        event.status_raw,
        result.outcome.value,
        result.payout_id,
    )

    _record(
        result.outcome.value,
        signature_valid=signature_valid,
        event_id=event.event_id,
        event_type=event.event_type,
        provider_ref=event.provider_reference,
        status_raw=event.status_raw,
        amount=str(event.amount) if event.amount is not None else None,
        body=stored_body,
        payout_id=result.payout_id,
        payout_status_before=result.status_before.value if result.status_before else None,
        payout_status_after=result.status_after.value if result.status_after else None,
        match_method=result.method,
        candidates=list(result.candidates),
    )

    out: dict[str, Any] = {
        "ok": True,
        "provider": provider.value,
        "applied": result.applied,
        **result.to_dict(),
    }
    if not result.applied:
        out["ignored"] = True
        out["reason"] = result.outcome.value
    return out


@router.post("/stripe-payouts")
async def stripe_payouts_webhook(
    req: Request,
    reconciler: SettlementReconciler = Depends(get_reconciler),
    event_log: WebhookEventLog = Depends(get_event_log),
):
    return await _handle_payout_webhook(
        req,
        provider=PayoutProvider.STRIPE_CONNECT,
        verifier=_stripe_verifier,
        reconciler=reconciler,
        event_log=event_log,
    )


@router.post("/paypal-payouts")
async def paypal_payouts_webhook(
    req: Request,
    reconciler: SettlementReconciler = Depends(get_reconciler),
    event_log: WebhookEventLog = Depends(get_event_log),
    paypal: PayPalWebhookVerifier = Depends(get_paypal_verifier),
):
    return await _handle_payout_webhook(
        req,
        provider=PayoutProvider.PAYPAL_PAYOUTS,
        verifier=_paypal_verifier(paypal),
        reconciler=reconciler,
        event_log=event_log,
    )


@router.post("/mpesa-b2c")
async def mpesa_b2c_webhook(
    req: Request,
    reconciler: SettlementReconciler = Depends(get_reconciler),
    event_log: WebhookEventLog = Depends(get_event_log),
):
    return await _handle_payout_webhook(
        req,
        provider=PayoutProvider.MPESA_B2C,
        verifier=_mpesa_verifier,
        reconciler=reconciler,
        event_log=event_log,
    )


@router.post("/payouts")
async def generic_payout_webhook(
    req: Request,
    reconciler: SettlementReconciler = Depends(get_reconciler),
    event_log: WebhookEventLog = Depends(get_event_log),
):
    return await _handle_payout_webhook(
        req,
        provider=PayoutProvider.BANK_TRANSFER,
        verifier=_generic_verifier,
        reconciler=reconciler,
        event_log=event_log,
    )
