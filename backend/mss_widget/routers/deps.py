from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import InvalidContext, PlaceholderError, PlaceholderNotFound, PlaceholderStateError, StorageUnavailable
from ..models import School
from ..placeholder_service import PlaceholderService
from ..settings import Settings


def get_placeholder_service(request: Request) -> PlaceholderService:
	return request.app.state.placeholder_service


def get_settings(request: Request) -> Settings:
	return request.app.state.settings


def get_school_by_slug(slug: str, db: Session = Depends(get_db)) -> School:
	row = db.query(School).filter(School.slug == slug.strip()).first()
	if row is None:
		raise HTTPException(status_code=404, detail="school_not_found")
	return row


def _status_for(exc: PlaceholderError) -> int:
	if isinstance(exc, PlaceholderNotFound):
		return 404
	if isinstance(exc, PlaceholderStateError):
		return 409
	if isinstance(exc, InvalidContext):
		return 422
	if isinstance(exc, StorageUnavailable):
		return 503
	return 500


async def placeholder_error_handler(request: Request, exc: PlaceholderError) -> JSONResponse:
	headers = {"Retry-After": "1"} if exc.retryable else None
	return JSONResponse(
		status_code=_status_for(exc),
		content={"detail": exc.code, "message": exc.message, "retryable": exc.retryable},
		headers=headers,
	)
