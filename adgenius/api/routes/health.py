from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adgenius import __version__
from adgenius.database.session import get_db_session

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok", "version": __version__}


@router.get("/health/readiness")
def readiness(db: Session = Depends(get_db_session)):
    """Readiness probe: the database answers a trivial query."""
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        database = "unavailable"
    return {
        "status": "ready" if database == "ok" else "not_ready",
        "checks": {"database": database},
    }
