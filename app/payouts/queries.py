# app/payouts/queries.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from app.payouts.errors import NotFoundError
from app.payouts.model import Payout
from app.payouts.store import PayoutFilter, PayoutStore

MAX_LIMIT = 200


@dataclass(frozen=True)
class Caller:
    user_id: str
    is_admin: bool
    payee_id: Optional[str] = None


def clamp_page(limit: Optional[int], skip: Optional[int], *, default_limit: int) -> tuple[int, int]:
    lim = default_limit if limit is None else int(limit)
    lim = max(1, min(lim, MAX_LIMIT))
    return lim, max(0, int(skip or 0))


def scoped_filter(caller: Caller, flt: PayoutFilter) -> PayoutFilter:
    """Non-admin callers only ever see their own payouts, whatever they ask for."""
    if caller.is_admin:
        return flt
    return PayoutFilter(
        payee_id=caller.payee_id or "",
        status=flt.status,
        provider=flt.provider,
        created_from=flt.created_from,
        created_to=flt.created_to,
    )


def list_payouts(
    store: PayoutStore,
    caller: Caller,
    flt: PayoutFilter,
    *,
    limit: Optional[int] = None,
    skip: Optional[int] = None,
) -> dict:
    lim, off = clamp_page(limit, skip, default_limit=50 if caller.is_admin else 20)
    payouts, total = store.list_payouts(scoped_filter(caller, flt), limit=lim, skip=off)
    return {
        "data": [p.to_dict() for p in payouts],
        "total": total,
        "limit": lim,
        "skip": off,
    }


def get_payout_for(store: PayoutStore, caller: Caller, payout: Optional[Payout]) -> Payout:
    # hide existence of other payees' payouts
    if payout is None or (not caller.is_admin and payout.payee_id != caller.payee_id):
        raise NotFoundError("Payout not found")
    return payout
