# app/sources/payees.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from psycopg2.extras import RealDictCursor

from db import Database


@dataclass(frozen=True)
class Payee:
    id: str
    user_id: str
    name: str
    stripe_account_id: Optional[str] = None
    paypal_email: Optional[str] = None
    mpesa_phone: Optional[str] = None
    bank_details: dict[str, Any] = field(default_factory=dict)


class PayeeDirectory(Protocol):
    def get_payee(self, payee_id: str) -> Optional[Payee]: ...

    def payee_id_for_user(self, user_id: str) -> Optional[str]: ...


def _parse_bank_details(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


class PgPayeeDirectory:
    def __init__(self, db: Database):
        self._db = db

    def get_payee(self, payee_id: str) -> Optional[Payee]:
        with self._db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT
                      d.id::text AS id,
                      d.user_id::text AS user_id,
                      COALESCE(u.name, '') AS name,
                      d.stripe_account_id,
                      d.paypal_payout_email,
                      d.mpesa_phone_number,
                      d.bank_details
                    FROM doctor_profiles d
                    LEFT JOIN users u ON u.id = d.user_id
                    WHERE d.id::text = %s
                    """,
                    (payee_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return Payee(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            stripe_account_id=row.get("stripe_account_id"),
            paypal_email=row.get("paypal_payout_email"),
            mpesa_phone=row.get("mpesa_phone_number"),
            bank_details=_parse_bank_details(row.get("bank_details")),
        )

    def payee_id_for_user(self, user_id: str) -> Optional[str]:
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id::text FROM doctor_profiles WHERE user_id::text = %s",
                    (user_id,),
                )
                row = cur.fetchone()
        return row[0] if row else None
