import time

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db

router = APIRouter(tags=["health"])

_started = time.monotonic()


@router.get("/health")
def health(db: Session = Depends(get_db)):
	try:
		db.execute(text("SELECT 1"))
		database = "ok"
	except SQLAlchemyError:
		database = "unavailable"
	return {"ok": True, "uptime_seconds": round(time.monotonic() - _started, 3), "database": database}
