import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies.db import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health() -> dict[str, object]:
    return {"ok": True, "service": "safedocs-api", "environment": settings.environment}


@router.get("/healthz")
def healthz(db: Session = Depends(get_db)):
    """Readiness probe: the database must answer a trivial query."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("healthcheck_database_failed")
        return JSONResponse(status_code=503, content={"status": "unavailable", "database": "error"})
    return {"status": "ok", "database": "ok"}
