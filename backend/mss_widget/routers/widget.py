"""Public endpoints used by the embedded widget.

The widget asks for a submission id before it uploads audio for scoring, so
that the scoring result and any later report can be attached to a stable row.
Retries and double-clicks for the same student and question get the same id
back while that submission is still pending.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..db import get_db
from ..models import Question, School
from ..placeholder_service import PlaceholderService
from .deps import get_placeholder_service, get_school_by_slug
from .schools import billing_status, school_settings

router = APIRouter(prefix="/api/widget", tags=["widget"])

# The school comes from the slug; a body can never pick another tenant
_ID_FIELDS = {
	"tenant_id", "tenantId", "school_id", "schoolId",
	"subject_id", "subjectId", "studentId",
	"task_id", "taskId", "questionId",
}


class IntakeRequest(BaseModel):
	# Unknown fields are caller-defined context and travel into the stored payload
	model_config = ConfigDict(populate_by_name=True, extra="allow")

	student_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("student_id", "studentId"))
	question_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("question_id", "questionId"))
	help_level: Optional[int] = Field(default=None, ge=0)
	help_surface: Optional[str] = Field(default=None, max_length=64)
	widget_variant: Optional[str] = Field(default=None, max_length=128)
	dashboard_variant: Optional[str] = Field(default=None, max_length=128)
	extra: Dict[str, Any] = Field(default_factory=dict)


class IntakeResponse(BaseModel):
	ok: bool = True
	submission_id: int
	reused: bool


class QuestionOut(BaseModel):
	id: int
	question: str


class BootstrapResponse(BaseModel):
	ok: bool = True
	slug: str
	school_id: int
	config: Dict[str, Any]
	form: Dict[str, Any]
	questions: List[QuestionOut]


def _public_questions(db: Session, school_id: int) -> List[Question]:
	return (
		db.query(Question)
		.filter(Question.school_id == school_id, Question.is_public.is_(True), Question.is_active.is_(True))
		.order_by(Question.position, Question.id)
		.all()
	)


@router.get("/{slug}/bootstrap", response_model=BootstrapResponse)
def bootstrap(school: School = Depends(get_school_by_slug), db: Session = Depends(get_db)):
	settings = school_settings(school)
	return BootstrapResponse(
		slug=school.slug,
		school_id=school.id,
		config=settings.get("config") or {},
		form=settings.get("form") or {},
		questions=[QuestionOut(id=q.id, question=q.question) for q in _public_questions(db, school.id)],
	)


@router.post("/{slug}/submissions", response_model=IntakeResponse)
async def create_submission(
	req: IntakeRequest,
	school: School = Depends(get_school_by_slug),
	db: Session = Depends(get_db),
	service: PlaceholderService = Depends(get_placeholder_service),
):
	if req.question_id is not None:
		question = db.get(Question, req.question_id)
		if question is None or question.school_id != school.id or not question.is_active:
			raise HTTPException(status_code=422, detail="unknown_question")

	context = {k: v for k, v in req.model_dump(exclude={"student_id", "question_id"}).items() if k not in _ID_FIELDS}
	context.update(tenant_id=school.id, subject_id=req.student_id, task_id=req.question_id)
	admission = await service.admit(context)

	# Only a new row consumes quota; a pending attempt is always handed back
	if admission.created and school.daily_limit:
		status = await run_in_threadpool(billing_status, school, service.store)
		if status.used_today > status.daily_limit:
			await service.withdraw(admission.id)
			raise HTTPException(status_code=429, detail="limit_exceeded")
	return IntakeResponse(submission_id=admission.id, reused=not admission.created)
