
#app/webhooks/repository.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from psycopg2.extras import Json, RealDictCursor

from db import Database


@dataclass
class WebhookEventRecord:
    provider: str
    path: str
    outcome: str
    request_id: str | None = None
    signature_valid: bool | None = None
    signature_error: str | None = None
    event_id: str | None = None
    event_type: str | None = None
    provider_ref: str | None = None
    status_raw: str | None = None
    amount: str | None = None
    body: dict[str, Any] | None = None
    body_raw: str | None = None
    payout_id: str | None = None
    payout_status_before: str | None = None
    payout_status_after: str | None = None
    match_method: str | None = None
    candidates: list[str] = field(default_factory=list)
    reason: str | None = None


class WebhookEventLog(Protocol):
    def record(self, event: WebhookEventRecord) -> str:
        """Persist one inbound callback for audit/debugging. Returns its id."""
        ...

    def list_events(
        self,
        *,
        provider: Optional[str] = None,
        outcome: Optional[str] = None,
        payout_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]: ...


class PgWebhookEventLog:
    def __init__(self, db: Database):
        self._db = db

    def record(self, event: WebhookEventRecord) -> str:
        sql = """
        INSERT INTO payout_webhook_events (
          provider, path, request_id,
          signature_valid, signature_error,
          event_id, event_type, provider_ref, status_raw, amount,
          body, body_raw,
          payout_id, payout_status_before, payout_status_after,
          match_method, candidates,
          outcome, reason
        )
        VALUES (
          %(provider)s, %(path)s, %(request_id)s,
          %(signature_valid)s, %(signature_error)s,
          %(event_id)s, %(event_type)s, %(provider_ref)s, %(status_raw)s, %(amount)s,
          %(body)s, %(body_raw)s,
          %(payout_id)s, %(payout_status_before)s, %(payout_status_after)s,
          %(match_method)s, %(candidates)s,
          %(outcome)s, %(reason)s
        )
        RETURNING id
        """
        params = {
            "provider": event.provider,
            "path": event.path,
            "request_id": event.request_id,
            "signature_valid": event.signature_valid,
            "signature_error": event.signature_error,
            "event_id": event.event_id,
            "event_type": event.event_type,
            "provider_ref": event.provider_ref,
            "status_raw": event.status_raw,
            "amount": event.amount,
            "body": Json(event.body) if event.body is not None else None,
            "body_raw": event.body_raw,
            "payout_id": event.payout_id,
            "payout_status_before": event.payout_status_before,
            "payout_status_after": event.payout_status_after,
            "match_method": event.match_method,
            "candidates": Json(list(event.candidates)),
            "outcome": event.outcome,
            "reason": event.reason,
        }
        with self._db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
                assert row and row[0], "record: missing id"
                return str(row[0])

    def list_events(
        self,
        *,
        provider: Optional[str] = None,
        outcome: Optional[str] = None,
        payout_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        limit = max(1, min(int(limit or 50), 200))

        where = []
        params: dict[str, Any] = {"limit": limit}

        if provider:
            where.append("provider = %(provider)s")
            params["provider"] = provider
        if outcome:
            where.append("outcome = %(outcome)s")
            params["outcome"] = outcome
        if payout_id:
            where.append("payout_id = %(payout_id)s")
            params["payout_id"] = payout_id

        where_sql = ("WHERE " + " AND ".join(where)) if where else ""

        sql = f"""
        SELECT
          id, provider, path, request_id, received_at,
          signature_valid, signature_error,
          event_id, event_type, provider_ref, status_raw, amount,
          payout_id, payout_status_before, payout_status_after,
          match_method, candidates, outcome, reason
        FROM payout_webhook_events
        {where_sql}
        ORDER BY received_at DESC
        LIMIT %(limit)s
        """

        with self._db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = [dict(r) for r in cur.fetchall()]

        for r in rows:
            r["id"] = str(r["id"])
            if r.get("payout_id") is not None:
                r["payout_id"] = str(r["payout_id"])
            if r.get("received_at") is not None:
                r["received_at"] = r["received_at"].isoformat()
        return rows
