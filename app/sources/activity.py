# app/sources/activity.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from psycopg2.extras import RealDictCursor

from db import Database


@dataclass(frozen=True)
class BillableActivity:
    id: str
    payee_id: Optional[str]
    payer_id: Optional[str]
    completed_at: datetime


class ActivitySource(Protocol):
    def completed_between(self, start: datetime, end: datetime) -> list[BillableActivity]:
        """Completed, payee-assigned activity with completed_at in [start, end]."""
        ...


class PgActivitySource:
    """
    Completed appointments. The appointment table belongs to the clinical
    side of the application; only the columns below are relied on.
    """

    def __init__(self, db: Database):
        self._db = db

    def completed_between(self, start: datetime, end: datetime) -> list[BillableActivity]:
        with self._db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT
                      a.id::text AS id,
                      a.doctor_id::text AS payee_id,
                      a.patient_id::text AS payer_id,
                      a.updated_at AS completed_at
                    FROM appointments a
                    WHERE upper(a.status) = 'COMPLETED'
                      AND a.doctor_id IS NOT NULL
                      AND a.updated_at >= %s
                      AND a.updated_at <= %s
                    ORDER BY a.updated_at ASC, a.id ASC
                    """,
                    (start, end),
                )
                rows = cur.fetchall()

        return [
            BillableActivity(
                id=r["id"],
                payee_id=r["payee_id"],
                payer_id=r["payer_id"],
                completed_at=r["completed_at"],
            )
            for r in rows
        ]
