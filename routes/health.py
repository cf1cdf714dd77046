
from __future__ import annotations

import os

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from db import Database
from deps.services import get_database
from settings import settings

router = APIRouter(tags=["health"])

MIGRATION_REVISION = "0001_payout_schema"


def _check_migrations(db: Database) -> bool:
    try:
        with db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('public.alembic_version');")
                exists = cur.fetchone()[0]
                if not exists:
                    return False
                cur.execute("SELECT version_num FROM alembic_version LIMIT 1;")
                row = cur.fetchone()
                if not row or not row[0]:
                    return False
                return True
    except Exception:
        return False


def _resolve_git_sha() -> str | None:
    return (os.getenv("GIT_SHA") or "").strip() or None


@router.get("/health")
def health():
    return {
        "ok": True,
        "env": settings.ENV,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
    }


@router.get("/readyz")
def readyz(db: Database = Depends(get_database)):
    db_ok, db_error = db.ping()
    migrations_ok = _check_migrations(db) if db_ok else False
    ready = bool(db_ok and migrations_ok)
    body = {
        "ready": ready,
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": _resolve_git_sha(),
        "db_ok": db_ok,
        "db_error": db_error,
        "migrations_ok": migrations_ok,
        "migration_revision": MIGRATION_REVISION,
    }
    return JSONResponse(status_code=200 if ready else 503, content=body)
