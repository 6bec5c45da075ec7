from __future__ import annotations
import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..admission_store import AdmissionStore
from ..db import get_db
from ..models import EmbedEvent, School
from ..placeholder_service import PlaceholderService
from .deps import get_placeholder_service, get_school_by_slug

router = APIRouter(prefix="/api", tags=["schools"])

logger = logging.getLogger(__name__)


class CreateSchoolRequest(BaseModel):
	slug: str = Field(min_length=2, max_length=128, pattern=r"^[a-z0-9][a-z0-9-]*$")
	name: str = Field(min_length=1, max_length=256)
	daily_limit: int = Field(default=0, ge=0)


class SchoolOut(BaseModel):
	id: int
	slug: str
	name: str
	daily_limit: int


class BillingStatus(BaseModel):
	ok: bool
	blocked: bool
	reason: Optional[str] = None
	daily_limit: int
	used_today: int
	remaining_today: Optional[int] = None


def _school_out(row: School) -> SchoolOut:
	return SchoolOut(id=row.id, slug=row.slug, name=row.name, daily_limit=row.daily_limit)


def school_settings(row: School) -> Dict[str, Any]:
	if not row.settings:
		return {}
	try:
		data = json.loads(row.settings)
	except ValueError:
		logger.warning("school %s has unreadable settings", row.slug)
		return {}
	return data if isinstance(data, dict) else {}


def billing_status(school: School, store: AdmissionStore, *, now: Optional[datetime] = None) -> BillingStatus:
	limit = int(school.daily_limit or 0)
	if limit <= 0:
		return BillingStatus(ok=True, blocked=False, daily_limit=0, used_today=0)
	start_of_day = (now or datetime.utcnow()).replace(hour=0, minute=0, second=0, microsecond=0)
	used = store.count(school_id=school.id, created_since=start_of_day)
	blocked = used >= limit
	return BillingStatus(
		ok=not blocked,
		blocked=blocked,
		reason="limit_exceeded" if blocked else None,
		daily_limit=limit,
		used_today=used,
		remaining_today=max(0, limit - used),
	)


@router.post("/schools", response_model=SchoolOut, status_code=201)
def create_school(req: CreateSchoolRequest, db: Session = Depends(get_db)):
	row = School(slug=req.slug, name=req.name.strip(), daily_limit=req.daily_limit)
	db.add(row)
	try:
		db.commit()
	except IntegrityError:
		db.rollback()
		raise HTTPException(status_code=409, detail="slug already exists")
	return _school_out(row)


@router.get("/schools/{slug}", response_model=SchoolOut)
def get_school(school: School = Depends(get_school_by_slug)):
	return _school_out(school)


@router.get("/embed-check", response_model=BillingStatus)
def embed_check(
	school_id: str = Query(..., alias="schoolId"),
	db: Session = Depends(get_db),
	service: PlaceholderService = Depends(get_placeholder_service),
):
	try:
		sid = int(school_id)
	except ValueError:
		sid = 0
	if sid <= 0:
		raise HTTPException(status_code=400, detail="invalid_school_id")
	school = db.get(School, sid)
	if school is None:
		raise HTTPException(status_code=404, detail="school_not_found")
	return billing_status(school, service.store)


class EmbedEventRequest(BaseModel):
	school_id: Optional[int] = Field(default=None, gt=0, validation_alias=AliasChoices("school_id", "schoolId"))
	event_type: str = Field(min_length=1, max_length=64, validation_alias=AliasChoices("event_type", "type"))
	message: Optional[str] = Field(default=None, max_length=2000)
	detail: Dict[str, Any] = Field(default_factory=dict)


@router.post("/embed-event")
def embed_event(req: EmbedEventRequest, db: Session = Depends(get_db)):
	# Widget-side problems (blocked embeds, load errors) reported by the host page
	if req.school_id is not None and db.get(School, req.school_id) is None:
		raise HTTPException(status_code=404, detail="school_not_found")
	row = EmbedEvent(
		school_id=req.school_id,
		event_type=req.event_type,
		message=req.message,
		detail=json.dumps(req.detail, sort_keys=True) if req.detail else None,
	)
	db.add(row)
	db.commit()
	logger.info("embed-event %s for school %s: %s", req.event_type, req.school_id, req.message)
	return {"ok": True, "id": row.id}
