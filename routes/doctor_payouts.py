
# routes/doctor_payouts.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.payouts.controller import parse_payout_id
from app.payouts.model import PayoutStatus
from app.payouts.queries import Caller, get_payout_for, list_payouts
from app.payouts.store import PayoutFilter, PayoutStore
from deps.services import get_caller, get_store

router = APIRouter(prefix="/v1/payouts", tags=["payouts"])


@router.get("")
def my_payouts(
    status: Optional[PayoutStatus] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    skip: int = Query(0, ge=0),
    caller: Caller = Depends(get_caller),
    store: PayoutStore = Depends(get_store),
):
    return list_payouts(store, caller, PayoutFilter(status=status), limit=limit, skip=skip)


@router.get("/{payout_id}")
def my_payout(
    payout_id: str,
    caller: Caller = Depends(get_caller),
    store: PayoutStore = Depends(get_store),
):
    pid = parse_payout_id(payout_id)
    return get_payout_for(store, caller, store.get(pid)).to_dict()
