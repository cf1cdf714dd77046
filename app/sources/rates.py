# app/sources/rates.py
from __future__ import annotations

from typing import Optional, Protocol

from db import Database

PAYOUT_RATE_KEY = "PAYOUT_RATE_PER_CONSULTATION"


class RateSource(Protocol):
    def get(self, key: str) -> Optional[str]: ...


class PgRateSource:
    """Reads system_config key/value rows."""

    def __init__(self, db: Database):
        self._db = db

    def get(self, key: str) -> Optional[str]:
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT value FROM system_config WHERE key = %s", (key,))
                row = cur.fetchone()
        if not row or row[0] is None:
            return None
        return str(row[0])
