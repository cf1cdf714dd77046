import json
import time

from app.webhooks.signatures import hmac_sha256_hex


def canonical_json_bytes(payload) -> bytes:
    return json.dumps(
        payload,
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")


def stripe_headers(secret: str, body_bytes: bytes, timestamp: int | None = None) -> dict[str, str]:
    # Stripe's v1 scheme: HMAC-SHA256 over "{t}.{body}"
    ts = int(timestamp if timestamp is not None else time.time())
    sig = hmac_sha256_hex(secret, f"{ts}.".encode("utf-8") + body_bytes)
    return {"Stripe-Signature": f"t={ts},v1={sig}"}


def mpesa_headers(secret: str, body_bytes: bytes) -> dict[str, str]:
    return {"X-Mpesa-Signature": hmac_sha256_hex(secret, body_bytes)}


def generic_headers(secret: str, body_bytes: bytes) -> dict[str, str]:
    return {"X-Signature": "sha256=" + hmac_sha256_hex(secret, body_bytes)}
