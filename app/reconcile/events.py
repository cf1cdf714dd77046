
# app/reconcile/events.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from app.payouts.errors import ValidationError
from app.payouts.model import PayoutProvider, PayoutStatus


@dataclass(frozen=True)
class ProviderEvent:
    """
    A provider callback reduced to what reconciliation needs.
    `mapped_status` is None when the provider's token is not recognised.
    """

    provider: PayoutProvider
    status_raw: str
    mapped_status: Optional[PayoutStatus]
    provider_reference: Optional[str] = None
    alt_references: tuple[str, ...] = ()
    payout_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    identifiers: dict[str, Any] = field(default_factory=dict)

    @property
    def references(self) -> tuple[str, ...]:
        refs = [self.provider_reference] if self.provider_reference else []
        refs.extend(r for r in self.alt_references if r and r not in refs)
        return tuple(refs)


def _str(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def _require_dict(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object", reason="INVALID_JSON_OBJECT")
    return payload


# ==========================================================
# Stripe (card rail / Connect transfers)
# ==========================================================

_STRIPE_EVENT_STATUS = {
    "transfer.paid": PayoutStatus.PAID,
    "payout.paid": PayoutStatus.PAID,
    "transfer.failed": PayoutStatus.FAILED,
    "transfer.reversed": PayoutStatus.FAILED,
    "payout.failed": PayoutStatus.FAILED,
    "payout.canceled": PayoutStatus.FAILED,
    "transfer.created": PayoutStatus.PROCESSING,
    "payout.created": PayoutStatus.PROCESSING,
}

_STRIPE_OBJECT_STATUS = {
    "paid": PayoutStatus.PAID,
    "failed": PayoutStatus.FAILED,
    "canceled": PayoutStatus.FAILED,
    "pending": PayoutStatus.PROCESSING,
    "in_transit": PayoutStatus.PROCESSING,
}


def parse_stripe_event(payload: Any) -> ProviderEvent:
    body = _require_dict(payload)
    event_type = _str(body.get("type")) or ""
    obj = (body.get("data") or {}).get("object") if isinstance(body.get("data"), dict) else None
    if not isinstance(obj, dict):
        raise ValidationError("Stripe event missing data.object", reason="INVALID_PAYLOAD")

    obj_status = (_str(obj.get("status")) or "").lower()
    mapped = _STRIPE_EVENT_STATUS.get(event_type)
    status_raw = event_type
    if event_type.endswith(".updated"):
        # "updated" says nothing by itself; only the object's status counts
        mapped = _STRIPE_OBJECT_STATUS.get(obj_status)
        status_raw = f"{event_type}:{obj_status or '-'}"

    metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
    amount_minor = _decimal(obj.get("amount"))
    amount = (amount_minor / 100) if amount_minor is not None else None
    ref = _str(obj.get("id"))
    alt = tuple(r for r in (_str(obj.get("transfer")), _str(obj.get("destination_payment"))) if r)

    return ProviderEvent(
        provider=PayoutProvider.STRIPE_CONNECT,
        status_raw=status_raw,
        mapped_status=mapped,
        provider_reference=ref,
        alt_references=alt,
        payout_id=_str(metadata.get("payout_id")),
        amount=amount,
        currency=(_str(obj.get("currency")) or "").upper() or None,
        event_id=_str(body.get("id")),
        event_type=event_type,
        identifiers={
            "event_id": _str(body.get("id")),
            "object_id": ref,
            "object_status": obj_status or None,
            "metadata_payout_id": _str(metadata.get("payout_id")),
        },
    )


# ==========================================================
# PayPal Payouts
# ==========================================================

_PAYPAL_STATUS = {
    "PAYMENT.PAYOUTS.ITEM.SUCCEEDED": PayoutStatus.PAID,
    "PAYMENT.PAYOUTS.ITEM.FAILED": PayoutStatus.FAILED,
    "PAYMENT.PAYOUTS.ITEM.RETURNED": PayoutStatus.FAILED,
    "PAYMENT.PAYOUTS.ITEM.BLOCKED": PayoutStatus.FAILED,
    "PAYMENT.PAYOUTS.ITEM.REFUNDED": PayoutStatus.FAILED,
    "PAYMENT.PAYOUTS.ITEM.DENIED": PayoutStatus.FAILED,
    "PAYMENT.PAYOUTS.ITEM.CANCELED": PayoutStatus.FAILED,
    "PAYMENT.PAYOUTS.ITEM.HELD": PayoutStatus.PROCESSING,
    "PAYMENT.PAYOUTS.ITEM.UNCLAIMED": PayoutStatus.PROCESSING,
    "PAYMENT.PAYOUTSBATCH.PROCESSING": PayoutStatus.PROCESSING,
    "PAYMENT.PAYOUTSBATCH.SUCCESS": PayoutStatus.PROCESSING,
    "PAYMENT.PAYOUTSBATCH.DENIED": PayoutStatus.FAILED,
}

_PAYPAL_BATCH_PREFIX = "payout_"


def normalize_paypal_event_type(value: Optional[str]) -> str:
    return (value or "").strip().upper().replace("-", ".")


def parse_paypal_event(payload: Any) -> ProviderEvent:
    body = _require_dict(payload)
    event_type = normalize_paypal_event_type(body.get("event_type"))
    resource = body.get("resource")
    if not isinstance(resource, dict):
        raise ValidationError("PayPal event missing resource", reason="INVALID_PAYLOAD")

    item = resource.get("payout_item") if isinstance(resource.get("payout_item"), dict) else {}
    batch_header = resource.get("batch_header") if isinstance(resource.get("batch_header"), dict) else {}
    amount_obj = item.get("amount") if isinstance(item.get("amount"), dict) else {}

    item_id = _str(resource.get("payout_item_id"))
    batch_id = _str(resource.get("payout_batch_id")) or _str(batch_header.get("payout_batch_id"))

    payout_id = _str(item.get("sender_item_id"))
    if not payout_id:
        sender_batch = (batch_header.get("sender_batch_header") or {}) if isinstance(batch_header.get("sender_batch_header"), dict) else {}
        sender_batch_id = _str(sender_batch.get("sender_batch_id")) or ""
        if sender_batch_id.startswith(_PAYPAL_BATCH_PREFIX):
            payout_id = sender_batch_id[len(_PAYPAL_BATCH_PREFIX):]

    return ProviderEvent(
        provider=PayoutProvider.PAYPAL_PAYOUTS,
        status_raw=event_type,
        mapped_status=_PAYPAL_STATUS.get(event_type),
        provider_reference=item_id or batch_id,
        alt_references=(batch_id,) if item_id and batch_id else (),
        payout_id=payout_id,
        amount=_decimal(amount_obj.get("value")),
        currency=(_str(amount_obj.get("currency")) or "").upper() or None,
        event_id=_str(body.get("id")),
        event_type=event_type,
        identifiers={
            "event_id": _str(body.get("id")),
            "payout_item_id": item_id,
            "payout_batch_id": batch_id,
            "transaction_id": _str(resource.get("transaction_id")),
            "transaction_status": _str(resource.get("transaction_status")),
            "sender_item_id": payout_id,
        },
    )


# ==========================================================
# M-Pesa B2C result callback
# ==========================================================

def _mpesa_result_parameters(result: dict[str, Any]) -> dict[str, Any]:
    params = result.get("ResultParameters")
    if not isinstance(params, dict):
        return {}
    entries = params.get("ResultParameter")
    if isinstance(entries, dict):
        entries = [entries]
    if not isinstance(entries, list):
        return {}
    out: dict[str, Any] = {}
    for e in entries:
        if isinstance(e, dict) and e.get("Key"):
            out[str(e["Key"])] = e.get("Value")
    return out


def parse_mpesa_b2c_event(payload: Any) -> ProviderEvent:
    body = _require_dict(payload)
    result = body.get("Result") if isinstance(body.get("Result"), dict) else body
    params = _mpesa_result_parameters(result)

    code_raw = result.get("ResultCode")
    mapped: Optional[PayoutStatus] = None
    code: Optional[int] = None
    try:
        code = int(str(code_raw).strip()) if code_raw is not None and str(code_raw).strip() != "" else None
    except ValueError:
        code = None
    if code is not None:
        mapped = PayoutStatus.PAID if code == 0 else PayoutStatus.FAILED

    conversation_id = _str(result.get("ConversationID") or body.get("ConversationID") or body.get("conversationID"))
    originator_id = _str(result.get("OriginatorConversationID") or body.get("OriginatorConversationID"))
    transaction_id = _str(result.get("TransactionID"))
    receipt = _str(params.get("TransactionReceipt"))
    amount = _decimal(params.get("TransactionAmount"))
    if amount is None:
        amount = _decimal(result.get("Amount") or body.get("Amount"))

    # results for requests we never recorded carry only the M-Pesa transaction id
    reference = conversation_id or transaction_id or receipt
    alt = tuple(r for r in (originator_id, transaction_id, receipt) if r and r != reference)

    return ProviderEvent(
        provider=PayoutProvider.MPESA_B2C,
        status_raw=f"ResultCode={code_raw}" if code_raw is not None else "",
        mapped_status=mapped,
        provider_reference=reference,
        alt_references=tuple(dict.fromkeys(alt)),
        payout_id=None,
        amount=amount,
        currency="KES",
        event_id=transaction_id or conversation_id,
        event_type="b2c.result",
        identifiers={
            "conversation_id": conversation_id,
            "originator_conversation_id": originator_id,
            "transaction_id": transaction_id,
            "result_desc": _str(result.get("ResultDesc")),
            "transaction_receipt": receipt,
            "reported_amount": str(amount) if amount is not None else None,
        },
    )


# ==========================================================
# Generic payout callback (bank transfer rail)
# ==========================================================

_GENERIC_STATUS = {
    "SUCCESS": PayoutStatus.PAID,
    "SUCCEEDED": PayoutStatus.PAID,
    "COMPLETED": PayoutStatus.PAID,
    "PAID": PayoutStatus.PAID,
    "PROCESSING": PayoutStatus.PROCESSING,
    "PENDING": PayoutStatus.PROCESSING,
    "IN_PROGRESS": PayoutStatus.PROCESSING,
    "FAILED": PayoutStatus.FAILED,
    "ERROR": PayoutStatus.FAILED,
    "REJECTED": PayoutStatus.FAILED,
    "RETURNED": PayoutStatus.FAILED,
}


def parse_generic_event(payload: Any) -> ProviderEvent:
    body = _require_dict(payload)
    status_raw = (_str(body.get("status")) or "").upper()
    meta = body.get("meta") if isinstance(body.get("meta"), dict) else {}
    payout_id = _str(body.get("payoutId") or body.get("payout_id"))
    ref = _str(body.get("providerReference") or body.get("provider_reference"))
    if not status_raw:
        raise ValidationError("Missing status", reason="MISSING_STATUS")
    if not payout_id and not ref:
        raise ValidationError("Missing payoutId or providerReference", reason="MISSING_REFERENCE")

    return ProviderEvent(
        provider=PayoutProvider.BANK_TRANSFER,
        status_raw=status_raw,
        mapped_status=_GENERIC_STATUS.get(status_raw),
        provider_reference=ref,
        payout_id=payout_id,
        amount=_decimal(meta.get("amount")),
        currency=(_str(meta.get("currency")) or "").upper() or None,
        event_id=_str(body.get("eventId") or meta.get("event_id")),
        event_type="payout.status",
        identifiers={
            "payout_id": payout_id,
            "provider_reference": ref,
            "bank_reference": _str(meta.get("bank_reference")),
        },
    )


PARSERS = {
    PayoutProvider.STRIPE_CONNECT: parse_stripe_event,
    PayoutProvider.PAYPAL_PAYOUTS: parse_paypal_event,
    PayoutProvider.MPESA_B2C: parse_mpesa_b2c_event,
    PayoutProvider.BANK_TRANSFER: parse_generic_event,
}
