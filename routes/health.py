from __future__ import annotations

import os

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from db import get_conn
from fundrelease.providers.factory import get_processor
from settings import settings

router = APIRouter(tags=["health"])

# Latest alembic revision this build expects.
MIGRATION_REVISION = "0002_payment_transitions"


def _check_db() -> tuple[bool, str | None]:
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
        return True, None
    except Exception as exc:
        return False, f"{type(exc).__name__}: {exc}"


def _applied_revision() -> str | None:
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT to_regclass('public.alembic_version');")
                if not cur.fetchone()[0]:
                    return None
                cur.execute("SELECT version_num FROM alembic_version LIMIT 1;")
                row = cur.fetchone()
                return row[0] if row else None
    except Exception:
        return None


def _version() -> dict[str, str | None]:
    return {
        "version": os.getenv("APP_VERSION", "1.0.0"),
        "git_sha": (os.getenv("GIT_SHA") or "").strip() or None,
    }


@router.get("/health")
def health():
    # Liveness only; never touches the database.
    return {"ok": True, "env": settings.ENV, "processor_mode": settings.PROCESSOR_MODE, **_version()}


@router.get("/healthz")
def healthz():
    db_ok, db_error = _check_db()
    return {"ok": True, "db_ok": db_ok, "db_error": db_error, **_version()}


@router.get("/readyz")
def readyz():
    db_ok, db_error = _check_db()
    revision = _applied_revision() if db_ok else None
    processor = get_processor()
    processor_ok = processor is not None and not processor.config_error()
    ready = bool(db_ok and revision == MIGRATION_REVISION and processor_ok)
    body = {
        "ready": ready,
        "db_ok": db_ok,
        "db_error": db_error,
        "migration_revision": revision,
        "expected_revision": MIGRATION_REVISION,
        "processor_ok": processor_ok,
        **_version(),
    }
    return body if ready else JSONResponse(status_code=503, content=body)
