"""
Health endpoints.

Lightweight liveness and readiness checks that never expose secrets.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from backend.core.database import LEDGER_TABLES, check_connection, get_engine, use_database

logger = logging.getLogger("inkwell")

root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + ledger tables (in-memory store is always ready)."""
    if not use_database():
        return {"status": "ok", "store": "memory"}

    try:
        engine = get_engine()
        if not check_connection(engine):
            return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

        inspector = inspect(engine)
        missing = [t for t in LEDGER_TABLES if not inspector.has_table(t)]
        if missing:
            detail = f"missing tables: {', '.join(missing)}"
            logger.warning(f"[readyz] {detail}")
            return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

        return {"status": "ok", "store": "sql"}
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e.__class__.__name__}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
