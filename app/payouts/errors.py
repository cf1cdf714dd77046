
# app/payouts/errors.py
from __future__ import annotations

from typing import Any, Optional


class PayoutError(Exception):
    """
    Base for payout domain failures.
    `reason` is stable and machine readable; `message` is for humans.
    """

    status_code = 500
    default_reason = "PAYOUT_ERROR"

    def __init__(self, message: str, *, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.reason, "message": self.message}


class ValidationError(PayoutError):
    status_code = 400
    default_reason = "VALIDATION_ERROR"


class NotFoundError(PayoutError):
    status_code = 404
    default_reason = "PAYOUT_NOT_FOUND"


class ConflictError(PayoutError):
    status_code = 409
    default_reason = "INVALID_STATE"

    def __init__(self, message: str, *, current_status: Optional[str] = None, reason: Optional[str] = None):
        super().__init__(message, reason=reason)
        self.current_status = current_status

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        if self.current_status:
            detail["current_status"] = self.current_status
        return detail


class DispatchError(PayoutError):
    status_code = 502
    default_reason = "DISPATCH_FAILED"

    def __init__(self, message: str, *, reason: Optional[str] = None, http_status: Optional[int] = None):
        super().__init__(message, reason=reason)
        self.http_status = http_status


class ReconciliationAmbiguous(PayoutError):
    status_code = 409
    default_reason = "RECONCILIATION_AMBIGUOUS"

    def __init__(self, message: str, *, candidate_ids: list[str] | None = None):
        super().__init__(message)
        self.candidate_ids = list(candidate_ids or [])


class SignatureVerificationFailed(PayoutError):
    status_code = 401
    default_reason = "INVALID_SIGNATURE"
