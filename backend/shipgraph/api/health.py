from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shipgraph.adapters.mock_notifier import MockNotifier, get_notifier
from shipgraph.config import settings
from shipgraph.db import engine

router = APIRouter()


@router.get("/health", tags=["health"])
def health(notifier: MockNotifier = Depends(get_notifier)):
    db_ok = False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            db_ok = True
    except SQLAlchemyError:
        db_ok = False
    notifier_ok = notifier.health_check()

    return {
        "status": "ok" if db_ok and notifier_ok else "degraded",
        "db": db_ok,
        "store_backend": settings.STORE_BACKEND,
        "notifier": notifier_ok,
    }
