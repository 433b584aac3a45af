from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..deps import get_db

router = APIRouter(tags=["health"])


@router.get("/healthz")
@router.get("/health/")
def health():
    return {"status": "ok"}


@router.get("/health/db")
def health_db(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"ok": True}
    except SQLAlchemyError as e:
        return JSONResponse(status_code=503, content={"ok": False, "error": "db_ping_failed", "detail": repr(e)})
