from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..admission_store import PlaceholderRecord
from ..placeholder_service import PlaceholderService
from .deps import get_placeholder_service

router = APIRouter(prefix="/api/submissions", tags=["submissions"])


class ScoreRequest(BaseModel):
	"""Scoring result delivered once the speech analysis finishes."""
	toefl: Optional[float] = Field(default=None, ge=0)
	ielts: Optional[float] = Field(default=None, ge=0)
	pte: Optional[float] = Field(default=None, ge=0)
	cefr: Optional[str] = Field(default=None, max_length=8)
	transcript: Optional[str] = None
	wpm: Optional[float] = Field(default=None, ge=0)
	meta: Optional[Dict[str, Any]] = None


class SubmissionOut(BaseModel):
	id: int
	status: str
	school_id: int
	student_id: Optional[int] = None
	question_id: Optional[int] = None
	help_level: Optional[int] = None
	help_surface: Optional[str] = None
	widget_variant: Optional[str] = None
	dashboard_variant: Optional[str] = None
	payload: Dict[str, Any]
	scores: Dict[str, Any]
	created_at: datetime
	finalized_at: Optional[datetime] = None


def submission_out(record: PlaceholderRecord) -> SubmissionOut:
	return SubmissionOut(
		id=record.id,
		status=record.status,
		school_id=record.school_id,
		student_id=record.student_id,
		question_id=record.question_id,
		help_level=record.help_level,
		help_surface=record.help_surface,
		widget_variant=record.widget_variant,
		dashboard_variant=record.dashboard_variant,
		payload=record.payload,
		scores=record.scores,
		created_at=record.created_at,
		finalized_at=record.finalized_at,
	)


@router.get("/{submission_id}", response_model=SubmissionOut)
async def get_submission(submission_id: int, service: PlaceholderService = Depends(get_placeholder_service)):
	return submission_out(await service.get(submission_id))


@router.put("/{submission_id}/score", response_model=SubmissionOut)
async def score_submission(
	submission_id: int,
	req: ScoreRequest,
	service: PlaceholderService = Depends(get_placeholder_service),
):
	record = await service.finalize(submission_id, req.model_dump(exclude_none=True))
	return submission_out(record)


@router.post("/{submission_id}/abandon", response_model=SubmissionOut)
async def abandon_submission(submission_id: int, service: PlaceholderService = Depends(get_placeholder_service)):
	return submission_out(await service.abandon(submission_id))
