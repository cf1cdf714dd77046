
# app/payouts/calculator.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from app.payouts.errors import ValidationError
from app.payouts.model import NewPayout, PayoutItem
from app.payouts.store import PayoutStore
from app.sources.activity import ActivitySource, BillableActivity
from app.sources.rates import PAYOUT_RATE_KEY, RateSource
from services.metrics import increment_payouts_created

logger = logging.getLogger("remodoc.payouts")


@dataclass
class CalculationSummary:
    period_start: datetime
    period_end: datetime
    rate: Decimal
    created: int = 0
    skipped_existing: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "rate": str(self.rate),
            "created": self.created,
            "skipped_existing": list(self.skipped_existing),
            "failed": dict(self.failed),
        }


def previous_month_period(now: datetime) -> tuple[datetime, datetime]:
    """[first instant, last instant] of the calendar month before `now`."""
    first_of_this_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    last_of_previous = first_of_this_month - timedelta(microseconds=1)
    first_of_previous = last_of_previous.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return first_of_previous, last_of_previous


class PayoutCalculator:
    """
    Turns completed billable activity for a period into READY payouts.

    Re-running a period is safe: a payee that already has a payout for the
    exact (period_start, period_end) is skipped, payees without one are
    created. Nothing is topped up or replaced.
    """

    def __init__(
        self,
        store: PayoutStore,
        activity: ActivitySource,
        rates: RateSource,
        *,
        currency: str,
        default_rate: Decimal,
    ):
        self._store = store
        self._activity = activity
        self._rates = rates
        self._currency = currency
        self._default_rate = Decimal(default_rate)

    def current_rate(self) -> Decimal:
        raw = self._rates.get(PAYOUT_RATE_KEY)
        if raw is None or not str(raw).strip():
            return self._default_rate
        try:
            rate = Decimal(str(raw).strip())
        except InvalidOperation:
            logger.warning("payout_rate_invalid key=%s value=%r fallback=%s", PAYOUT_RATE_KEY, raw, self._default_rate)
            return self._default_rate
        if not rate.is_finite() or rate < 0:
            logger.warning("payout_rate_invalid key=%s value=%r fallback=%s", PAYOUT_RATE_KEY, raw, self._default_rate)
            return self._default_rate
        return rate

    def compute_for_period(self, period_start: datetime, period_end: datetime) -> int:
        return self.run_for_period(period_start, period_end).created

    def run_for_period(self, period_start: datetime, period_end: datetime) -> CalculationSummary:
        if period_start > period_end:
            raise ValidationError(
                f"period_start {period_start.isoformat()} is after period_end {period_end.isoformat()}",
                reason="INVALID_PERIOD",
            )

        rate = self.current_rate()
        summary = CalculationSummary(period_start=period_start, period_end=period_end, rate=rate)
        logger.info(
            "payout_calc_start period_start=%s period_end=%s rate=%s currency=%s",
            period_start.isoformat(),
            period_end.isoformat(),
            rate,
            self._currency,
        )

        activities = self._activity.completed_between(period_start, period_end)
        by_payee = self._group_by_payee(activities)
        if not by_payee:
            logger.info("payout_calc_empty period_start=%s period_end=%s", period_start.isoformat(), period_end.isoformat())
            return summary

        for payee_id in sorted(by_payee):
            group = by_payee[payee_id]
            try:
                created = self._create_for_payee(payee_id, group, period_start, period_end, rate)
            except Exception as exc:
                # one payee failing must not stop the others; a re-run fills the gap
                logger.exception(
                    "payout_calc_payee_failed payee_id=%s period_start=%s period_end=%s activity_ids=%s",
                    payee_id,
                    period_start.isoformat(),
                    period_end.isoformat(),
                    ",".join(a.id for a in group),
                )
                summary.failed[payee_id] = f"{type(exc).__name__}: {exc}"
                continue

            if created:
                summary.created += 1
            else:
                summary.skipped_existing.append(payee_id)
                logger.info(
                    "payout_calc_skip_existing payee_id=%s period_start=%s period_end=%s",
                    payee_id,
                    period_start.isoformat(),
                    period_end.isoformat(),
                )

        if summary.created:
            increment_payouts_created(summary.created)
        if summary.failed:
            logger.error(
                "payout_calc_incomplete period_start=%s period_end=%s failed_payees=%s",
                period_start.isoformat(),
                period_end.isoformat(),
                ",".join(sorted(summary.failed)),
            )

        logger.info(
            "payout_calc_done created=%s skipped=%s failed=%s",
            summary.created,
            len(summary.skipped_existing),
            len(summary.failed),
        )
        return summary

    @staticmethod
    def _group_by_payee(activities: list[BillableActivity]) -> dict[str, list[BillableActivity]]:
        grouped: dict[str, list[BillableActivity]] = {}
        seen: set[str] = set()
        for a in activities:
            if not a.payee_id:
                continue
            if a.id in seen:
                continue
            seen.add(a.id)
            grouped.setdefault(a.payee_id, []).append(a)
        return grouped

    def _create_for_payee(
        self,
        payee_id: str,
        group: list[BillableActivity],
        period_start: datetime,
        period_end: datetime,
        rate: Decimal,
    ) -> bool:
        count = len(group)
        amount_due = rate * count

        new = NewPayout(
            payee_id=payee_id,
            period_start=period_start,
            period_end=period_end,
            consultations_count=count,
            interactions_count=count,
            amount_due=amount_due,
            currency=self._currency,
            notes=f"Auto-generated for {count} consultations at rate {rate}",
        )
        items = [
            PayoutItem(
                activity_id=a.id,
                description=f"Consultation {a.id}",
                amount=rate,
                currency=self._currency,
            )
            for a in group
        ]

        payout = self._store.create_payout(new, items)
        if payout is None:
            return False

        logger.info(
            "payout_created payout_id=%s payee_id=%s consultations=%s rate=%s amount_due=%s",
            payout.id,
            payee_id,
            count,
            rate,
            amount_due,
        )
        return True
