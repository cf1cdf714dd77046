
# app/payouts/repository.py
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Sequence
from uuid import UUID

from psycopg2 import errors as pg_errors
from psycopg2.extras import Json, RealDictCursor

from app.payouts.errors import ConflictError
from app.payouts.model import (
    NewPayout,
    Payout,
    PayoutItem,
    PayoutProvider,
    PayoutStatus,
    ReferenceSource,
    TERMINAL_STATUSES,
)
from app.payouts.store import PayoutFilter
from db import Database

logger = logging.getLogger("remodoc.payouts")

_PAYOUT_COLUMNS = """
  p.id,
  p.payee_id,
  p.period_start,
  p.period_end,
  p.consultations_count,
  p.interactions_count,
  p.amount_due,
  p.currency,
  p.status,
  p.provider,
  p.provider_reference,
  p.reference_source,
  p.approved_by,
  p.processed_at,
  p.dispatch_claimed_at,
  p.notes,
  p.created_at,
  p.updated_at
"""

_REFERENCE_RANK_SQL = """
  CASE reference_source
    WHEN 'HEURISTIC' THEN 1
    WHEN 'DISPATCH' THEN 2
    WHEN 'PROVIDER' THEN 3
    WHEN 'ADMIN' THEN 4
    ELSE 0
  END
"""


def _status(raw: str) -> PayoutStatus:
    value = (raw or "").strip().upper()
    # rows written before READY existed
    if value == "PENDING":
        return PayoutStatus.READY
    return PayoutStatus(value)


def _row_to_payout(row: dict[str, Any], items: Sequence[PayoutItem] = ()) -> Payout:
    return Payout(
        id=row["id"],
        payee_id=str(row["payee_id"]),
        period_start=row["period_start"],
        period_end=row["period_end"],
        consultations_count=int(row["consultations_count"] or 0),
        interactions_count=int(row["interactions_count"] or 0),
        amount_due=row["amount_due"],
        currency=row["currency"],
        status=_status(row["status"]),
        provider=PayoutProvider(row["provider"]) if row.get("provider") else None,
        provider_reference=row.get("provider_reference"),
        reference_source=ReferenceSource(row["reference_source"]) if row.get("reference_source") else None,
        approved_by=row.get("approved_by"),
        processed_at=row.get("processed_at"),
        dispatch_claimed_at=row.get("dispatch_claimed_at"),
        notes=row.get("notes"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        items=tuple(items),
    )


def _status_values(statuses: Iterable[PayoutStatus]) -> list[str]:
    values = [s.value for s in statuses]
    if PayoutStatus.READY.value in values:
        values.append("PENDING")
    return values


class PgPayoutStore:
    def __init__(self, db: Database):
        self._db = db

    # ==========================================================
    # Creation
    # ==========================================================

    def create_payout(self, new: NewPayout, items: Sequence[PayoutItem]) -> Optional[Payout]:
        with self._db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                # (payee_id, period_start, period_end) is unique: concurrent runs
                # serialize here and the loser inserts nothing.
                cur.execute(
                    f"""
                    INSERT INTO payouts AS p (
                      payee_id, period_start, period_end,
                      consultations_count, interactions_count,
                      amount_due, currency, status, provider, notes
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (payee_id, period_start, period_end) DO NOTHING
                    RETURNING {_PAYOUT_COLUMNS}
                    """,
                    (
                        new.payee_id,
                        new.period_start,
                        new.period_end,
                        new.consultations_count,
                        new.interactions_count,
                        new.amount_due,
                        new.currency,
                        new.status.value,
                        new.provider.value if new.provider else None,
                        new.notes,
                    ),
                )
                row = cur.fetchone()
                if not row:
                    return None

                for it in items:
                    cur.execute(
                        """
                        INSERT INTO payout_items (payout_id, activity_id, description, amount, currency)
                        VALUES (%s, %s, %s, %s, %s)
                        """,
                        (row["id"], it.activity_id, it.description, it.amount, it.currency),
                    )

            # parent and items commit together or not at all
            return _row_to_payout(dict(row), items)

    # ==========================================================
    # Reads
    # ==========================================================

    def _items_for(self, cur, payout_ids: list[UUID]) -> dict[UUID, list[PayoutItem]]:
        if not payout_ids:
            return {}
        cur.execute(
            """
            SELECT payout_id, activity_id, description, amount, currency
            FROM payout_items
            WHERE payout_id = ANY(%s)
            ORDER BY payout_id, activity_id
            """,
            (payout_ids,),
        )
        out: dict[UUID, list[PayoutItem]] = {}
        for r in cur.fetchall():
            out.setdefault(r["payout_id"], []).append(
                PayoutItem(
                    activity_id=str(r["activity_id"]),
                    description=r["description"],
                    amount=r["amount"],
                    currency=r["currency"],
                )
            )
        return out

    def _fetch(self, where_sql: str, params: Sequence[Any], *, suffix: str = "") -> list[Payout]:
        with self._db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {_PAYOUT_COLUMNS} FROM payouts p {where_sql} {suffix}",
                    tuple(params),
                )
                rows = [dict(r) for r in cur.fetchall()]
                items = self._items_for(cur, [r["id"] for r in rows])
        return [_row_to_payout(r, items.get(r["id"], ())) for r in rows]

    def get(self, payout_id: UUID) -> Optional[Payout]:
        rows = self._fetch("WHERE p.id = %s", (payout_id,))
        return rows[0] if rows else None

    def find_by_provider_reference(self, provider_reference: str) -> Optional[Payout]:
        rows = self._fetch(
            "WHERE p.provider_reference = %s",
            (provider_reference,),
            suffix="ORDER BY p.updated_at DESC LIMIT 1",
        )
        return rows[0] if rows else None

    def list_payouts(self, flt: PayoutFilter, *, limit: int, skip: int) -> tuple[list[Payout], int]:
        where: list[str] = []
        params: list[Any] = []

        if flt.payee_id is not None:
            where.append("p.payee_id = %s")
            params.append(flt.payee_id)
        if flt.status:
            where.append("p.status = ANY(%s)")
            params.append(_status_values([flt.status]))
        if flt.provider:
            where.append("p.provider = %s")
            params.append(flt.provider.value)
        if flt.created_from:
            where.append("p.created_at >= %s")
            params.append(flt.created_from)
        if flt.created_to:
            where.append("p.created_at <= %s")
            params.append(flt.created_to)

        where_sql = ("WHERE " + " AND ".join(where)) if where else ""

        payouts = self._fetch(
            where_sql,
            params + [limit, skip],
            suffix="ORDER BY p.period_start DESC, p.created_at DESC, p.id LIMIT %s OFFSET %s",
        )

        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT count(*) FROM payouts p {where_sql}", tuple(params))
                total = int(cur.fetchone()[0])

        return payouts, total

    def list_by_statuses(self, statuses: Iterable[PayoutStatus]) -> list[Payout]:
        return self._fetch(
            "WHERE p.status = ANY(%s)",
            (_status_values(statuses),),
            suffix="ORDER BY p.created_at DESC",
        )

    # ==========================================================
    # Updates
    # ==========================================================

    def transition(
        self,
        payout_id: UUID,
        *,
        from_statuses: Iterable[PayoutStatus],
        to_status: PayoutStatus,
        provider_reference: Optional[str] = None,
        reference_source: Optional[ReferenceSource] = None,
        provider: Optional[PayoutProvider] = None,
        approved_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Optional[Payout]:
        source = reference_source or ReferenceSource.PROVIDER
        ref_replace_sql = f"""
          (%(ref)s IS NOT NULL AND (provider_reference IS NULL OR {_REFERENCE_RANK_SQL} <= %(rank)s))
        """
        params = {
            "id": payout_id,
            "from": _status_values(from_statuses),
            "to": to_status.value,
            "terminal": to_status in TERMINAL_STATUSES,
            "ref": provider_reference,
            "source": source.value,
            "rank": source.rank,
            "provider": provider.value if provider else None,
            "approved_by": approved_by,
            "note": note,
        }

        try:
            with self._db.connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(
                        f"""
                        UPDATE payouts AS p
                        SET
                          status = %(to)s,
                          processed_at = CASE WHEN %(terminal)s THEN now() ELSE processed_at END,
                          provider_reference = CASE WHEN {ref_replace_sql} THEN %(ref)s ELSE provider_reference END,
                          reference_source = CASE WHEN {ref_replace_sql} THEN %(source)s ELSE reference_source END,
                          provider = COALESCE(%(provider)s, provider),
                          approved_by = COALESCE(%(approved_by)s, approved_by),
                          dispatch_claimed_at = NULL,
                          dispatch_claimed_by = NULL,
                          notes = CASE
                            WHEN %(note)s IS NULL THEN notes
                            WHEN notes IS NULL OR notes = '' THEN %(note)s
                            ELSE notes || E'\\n' || %(note)s
                          END,
                          updated_at = now()
                        WHERE id = %(id)s
                          AND status = ANY(%(from)s)
                        RETURNING {_PAYOUT_COLUMNS}
                        """,
                        params,
                    )
                    row = cur.fetchone()
                    if not row:
                        return None
                    items = self._items_for(cur, [row["id"]])
        except pg_errors.UniqueViolation:
            raise ConflictError(
                f"provider_reference {provider_reference} already belongs to another payout",
                reason="PROVIDER_REFERENCE_IN_USE",
            )

        return _row_to_payout(dict(row), items.get(row["id"], ()))

    def claim_dispatch(self, payout_id: UUID, claimed_by: str) -> Optional[Payout]:
        with self._db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    f"""
                    UPDATE payouts AS p
                    SET dispatch_claimed_at = now(),
                        dispatch_claimed_by = %s,
                        updated_at = now()
                    WHERE id = %s
                      AND status = %s
                      AND dispatch_claimed_at IS NULL
                    RETURNING {_PAYOUT_COLUMNS}
                    """,
                    (claimed_by, payout_id, PayoutStatus.APPROVED.value),
                )
                row = cur.fetchone()
                if not row:
                    return None
                items = self._items_for(cur, [row["id"]])
        return _row_to_payout(dict(row), items.get(row["id"], ()))

    def release_dispatch(self, payout_id: UUID) -> bool:
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE payouts
                    SET dispatch_claimed_at = NULL,
                        dispatch_claimed_by = NULL,
                        updated_at = now()
                    WHERE id = %s AND dispatch_claimed_at IS NOT NULL
                    """,
                    (payout_id,),
                )
                return cur.rowcount == 1

    def append_note(self, payout_id: UUID, note: str) -> bool:
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE payouts
                    SET notes = CASE WHEN notes IS NULL OR notes = '' THEN %s ELSE notes || E'\\n' || %s END,
                        updated_at = now()
                    WHERE id = %s
                    """,
                    (note, note, payout_id),
                )
                return cur.rowcount == 1

    def override(
        self,
        payout_id: UUID,
        *,
        status: PayoutStatus,
        provider_reference: Optional[str],
        note: str,
        actor: str,
    ) -> Optional[Payout]:
        try:
            with self._db.connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute("SELECT status FROM payouts WHERE id = %s FOR UPDATE", (payout_id,))
                    before = cur.fetchone()
                    if not before:
                        return None

                    cur.execute(
                        f"""
                        UPDATE payouts AS p
                        SET
                          status = %(status)s,
                          processed_at = CASE WHEN %(terminal)s THEN now() ELSE NULL END,
                          dispatch_claimed_at = NULL,
                          dispatch_claimed_by = NULL,
                          provider_reference = COALESCE(%(ref)s, provider_reference),
                          reference_source = CASE WHEN %(ref)s IS NULL THEN reference_source ELSE 'ADMIN' END,
                          notes = CASE WHEN notes IS NULL OR notes = '' THEN %(note)s ELSE notes || E'\\n' || %(note)s END,
                          updated_at = now()
                        WHERE id = %(id)s
                        RETURNING {_PAYOUT_COLUMNS}
                        """,
                        {
                            "id": payout_id,
                            "status": status.value,
                            "terminal": status in TERMINAL_STATUSES,
                            "ref": provider_reference,
                            "note": note,
                        },
                    )
                    row = dict(cur.fetchone())

                    cur.execute(
                        """
                        INSERT INTO payout_audit_log (actor, action, payout_id, metadata)
                        VALUES (%s, %s, %s, %s::jsonb)
                        """,
                        (
                            actor,
                            "PAYOUT_MANUAL_OVERRIDE",
                            payout_id,
                            Json(
                                {
                                    "status_before": before["status"],
                                    "status_after": status.value,
                                    "provider_reference": provider_reference,
                                    "note": note,
                                }
                            ),
                        ),
                    )
                    items = self._items_for(cur, [row["id"]])
        except pg_errors.UniqueViolation:
            raise ConflictError(
                f"provider_reference {provider_reference} already belongs to another payout",
                reason="PROVIDER_REFERENCE_IN_USE",
            )

        return _row_to_payout(row, items.get(row["id"], ()))

    def record_audit(
        self,
        *,
        actor: str,
        action: str,
        payout_id: Optional[UUID],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO payout_audit_log (actor, action, payout_id, metadata)
                    VALUES (%s, %s, %s, %s::jsonb)
                    """,
                    (actor, action, payout_id, Json(metadata or {})),
                )
