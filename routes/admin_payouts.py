
# routes/admin_payouts.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from app.payouts.calculator import PayoutCalculator, previous_month_period
from app.payouts.commands import parse_bulk_command, parse_command
from app.payouts.controller import PayoutLifecycleController, parse_payout_id
from app.payouts.export import export_csv
from app.payouts.model import PayoutProvider, PayoutStatus
from app.payouts.queries import Caller, get_payout_for, list_payouts
from app.payouts.store import PayoutFilter, PayoutStore
from app.sources.payees import PayeeDirectory
from app.webhooks.repository import WebhookEventLog
from deps.admin import require_admin
from deps.auth import CurrentUser
from deps.services import (
    get_calculator,
    get_controller,
    get_event_log,
    get_payees,
    get_store,
)

router = APIRouter(prefix="/v1/admin/payouts", tags=["admin-payouts"])
logger = logging.getLogger("remodoc.payouts")


class ComputeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


class CreatePayoutRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    payee_id: str = Field(min_length=1, max_length=100)
    period_start: datetime
    period_end: datetime
    amount_due: Decimal = Field(ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    provider: Optional[PayoutProvider] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


def _admin_caller(admin: CurrentUser) -> Caller:
    return Caller(user_id=admin.user_id, is_admin=True)


@router.get("")
def admin_list_payouts(
    status: Optional[PayoutStatus] = Query(None),
    provider: Optional[PayoutProvider] = Query(None),
    payee_id: Optional[str] = Query(None),
    created_from: Optional[datetime] = Query(None, alias="from"),
    created_to: Optional[datetime] = Query(None, alias="to"),
    limit: Optional[int] = Query(None, ge=1),
    skip: int = Query(0, ge=0),
    admin: CurrentUser = Depends(require_admin),
    store: PayoutStore = Depends(get_store),
):
    flt = PayoutFilter(
        payee_id=payee_id,
        status=status,
        provider=provider,
        created_from=created_from,
        created_to=created_to,
    )
    return list_payouts(store, _admin_caller(admin), flt, limit=limit, skip=skip)


@router.get("/export.csv")
def admin_export_payouts_csv(
    status: Optional[PayoutStatus] = Query(None),
    admin: CurrentUser = Depends(require_admin),
    store: PayoutStore = Depends(get_store),
    payees: PayeeDirectory = Depends(get_payees),
):
    logger.info("payout_export admin_id=%s status=%s", admin.user_id, status.value if status else None)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    response = StreamingResponse(export_csv(store, payees, status), media_type="text/csv")
    response.headers["Content-Disposition"] = f"attachment; filename=payouts-{stamp}.csv"
    return response


@router.get("/webhook-events")
def admin_list_webhook_events(
    provider: Optional[str] = Query(None),
    outcome: Optional[str] = Query(None),
    payout_id: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    _admin: CurrentUser = Depends(require_admin),
    event_log: WebhookEventLog = Depends(get_event_log),
):
    pid = str(parse_payout_id(payout_id)) if payout_id else None
    events = event_log.list_events(
        provider=provider.strip().upper() if provider else None,
        outcome=outcome.strip().upper() if outcome else None,
        payout_id=pid,
        limit=limit,
    )
    return {"data": events, "count": len(events)}


@router.post("/compute")
def admin_compute_payouts(
    req: Optional[ComputeRequest] = None,
    admin: CurrentUser = Depends(require_admin),
    calculator: PayoutCalculator = Depends(get_calculator),
):
    if req is None or req.period_start is None or req.period_end is None:
        start, end = previous_month_period(datetime.now(timezone.utc))
    else:
        start, end = req.period_start, req.period_end

    summary = calculator.run_for_period(start, end)
    logger.info(
        "payout_compute admin_id=%s period_start=%s period_end=%s created=%s skipped=%s failed=%s",
        admin.user_id,
        start.isoformat(),
        end.isoformat(),
        summary.created,
        len(summary.skipped_existing),
        len(summary.failed),
    )
    return summary.to_dict()


@router.post("", status_code=201)
def admin_create_payout(
    req: CreatePayoutRequest,
    admin: CurrentUser = Depends(require_admin),
    controller: PayoutLifecycleController = Depends(get_controller),
):
    payout = controller.create_manual_payout(
        admin_id=admin.user_id,
        payee_id=req.payee_id,
        period_start=req.period_start,
        period_end=req.period_end,
        amount_due=req.amount_due,
        currency=req.currency,
        provider=req.provider,
        notes=req.notes,
    )
    return payout.to_dict()


@router.post("/bulk")
def admin_bulk_payout_action(
    payload: dict[str, Any] = Body(...),
    admin: CurrentUser = Depends(require_admin),
    controller: PayoutLifecycleController = Depends(get_controller),
):
    command = parse_bulk_command(payload)
    results = controller.bulk(command, admin.user_id)
    return {
        "action": command.action,
        "results": {pid: r.to_dict() for pid, r in results.items()},
        "ok": sum(1 for r in results.values() if r.ok),
        "failed": sum(1 for r in results.values() if not r.ok),
    }


@router.get("/{payout_id}")
def admin_get_payout(
    payout_id: str,
    admin: CurrentUser = Depends(require_admin),
    store: PayoutStore = Depends(get_store),
):
    pid = parse_payout_id(payout_id)
    return get_payout_for(store, _admin_caller(admin), store.get(pid)).to_dict()


@router.post("/{payout_id}/actions")
def admin_payout_action(
    payout_id: str,
    payload: dict[str, Any] = Body(...),
    admin: CurrentUser = Depends(require_admin),
    controller: PayoutLifecycleController = Depends(get_controller),
):
    command = parse_command(payload)
    return controller.execute(payout_id, command, admin.user_id)
