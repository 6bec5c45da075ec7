"""School-scoped admin endpoints: widget settings, questions and AI prompts.

Rows belonging to another school are reported as missing. Questions and
prompts that are still referenced are deactivated instead of deleted.
"""

from __future__ import annotations
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import AiPrompt, AiReport, Question, School, Submission
from .deps import get_school_by_slug
from .schools import school_settings

router = APIRouter(prefix="/api/admin", tags=["admin"])

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------- widget

class WidgetSettings(BaseModel):
	config: Optional[Dict[str, Any]] = None
	form: Optional[Dict[str, Any]] = None
	daily_limit: Optional[int] = Field(default=None, ge=0)


@router.get("/widget/{slug}")
def get_widget_settings(school: School = Depends(get_school_by_slug)):
	settings = school_settings(school)
	return {
		"ok": True,
		"slug": school.slug,
		"config": settings.get("config") or {},
		"form": settings.get("form") or {},
		"daily_limit": school.daily_limit,
	}


@router.put("/widget/{slug}")
def put_widget_settings(
	req: WidgetSettings,
	school: School = Depends(get_school_by_slug),
	db: Session = Depends(get_db),
):
	settings = school_settings(school)
	if req.config is not None:
		settings["config"] = req.config
	if req.form is not None:
		settings["form"] = req.form
	school.settings = json.dumps(settings, sort_keys=True)
	if req.daily_limit is not None:
		school.daily_limit = req.daily_limit
	school.updated_at = datetime.utcnow()
	db.commit()
	logger.info("Updated widget settings for %s", school.slug)
	return get_widget_settings(school)


# ------------------------------------------------------------- questions

class QuestionIn(BaseModel):
	question: str = Field(min_length=1, max_length=4000)
	position: Optional[int] = None
	is_public: bool = True
	is_active: bool = True


class QuestionPatch(BaseModel):
	question: Optional[str] = Field(default=None, min_length=1, max_length=4000)
	position: Optional[int] = None
	is_public: Optional[bool] = None
	is_active: Optional[bool] = None


class QuestionRow(BaseModel):
	id: int
	question: str
	position: int
	is_public: bool
	is_active: bool


def _question_row(row: Question) -> QuestionRow:
	return QuestionRow(
		id=row.id,
		question=row.question,
		position=row.position,
		is_public=row.is_public,
		is_active=row.is_active,
	)


def _school_question(db: Session, school: School, question_id: int) -> Question:
	row = db.get(Question, question_id)
	if row is None or row.school_id != school.id:
		raise HTTPException(status_code=404, detail="question_not_found")
	return row


@router.get("/questions/{slug}", response_model=List[QuestionRow])
def list_questions(school: School = Depends(get_school_by_slug), db: Session = Depends(get_db)):
	rows = (
		db.query(Question)
		.filter(Question.school_id == school.id)
		.order_by(Question.position, Question.id)
		.all()
	)
	return [_question_row(r) for r in rows]


@router.post("/questions/{slug}", response_model=QuestionRow, status_code=201)
def create_question(
	req: QuestionIn,
	school: School = Depends(get_school_by_slug),
	db: Session = Depends(get_db),
):
	position = req.position
	if position is None:
		position = db.query(Question).filter(Question.school_id == school.id).count()
	row = Question(
		school_id=school.id,
		question=req.question.strip(),
		position=position,
		is_public=req.is_public,
		is_active=req.is_active,
	)
	db.add(row)
	db.commit()
	return _question_row(row)


@router.put("/questions/{slug}/{question_id}", response_model=QuestionRow)
def update_question(
	question_id: int,
	req: QuestionPatch,
	school: School = Depends(get_school_by_slug),
	db: Session = Depends(get_db),
):
	row = _school_question(db, school, question_id)
	changes = req.model_dump(exclude_none=True)
	if "question" in changes:
		changes["question"] = changes["question"].strip()
	for name, value in changes.items():
		setattr(row, name, value)
	if changes:
		row.updated_at = datetime.utcnow()
		db.commit()
	return _question_row(row)


@router.delete("/questions/{slug}/{question_id}")
def delete_question(
	question_id: int,
	school: School = Depends(get_school_by_slug),
	db: Session = Depends(get_db),
):
	row = _school_question(db, school, question_id)
	in_use = db.query(Submission.id).filter(Submission.question_id == row.id).first() is not None
	if in_use:
		row.is_active = False
		row.updated_at = datetime.utcnow()
		db.commit()
		return {"ok": True, "id": question_id, "mode": "soft"}
	db.delete(row)
	db.commit()
	return {"ok": True, "id": question_id, "mode": "hard"}


# ------------------------------------------------------------ ai prompts

class PromptIn(BaseModel):
	name: str = Field(min_length=1, max_length=256)
	prompt_text: str = Field(min_length=1, max_length=20000, validation_alias=AliasChoices("prompt_text", "promptText"))
	notes: Optional[str] = None
	language: Optional[str] = Field(default=None, max_length=16)
	sort_order: Optional[int] = Field(default=None, validation_alias=AliasChoices("sort_order", "sortOrder"))
	is_default: bool = Field(default=False, validation_alias=AliasChoices("is_default", "isDefault"))
	is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))


class PromptPatch(BaseModel):
	name: Optional[str] = Field(default=None, min_length=1, max_length=256)
	prompt_text: Optional[str] = Field(
		default=None, min_length=1, max_length=20000, validation_alias=AliasChoices("prompt_text", "promptText")
	)
	notes: Optional[str] = None
	language: Optional[str] = Field(default=None, max_length=16)
	sort_order: Optional[int] = Field(default=None, validation_alias=AliasChoices("sort_order", "sortOrder"))
	is_default: Optional[bool] = Field(default=None, validation_alias=AliasChoices("is_default", "isDefault"))
	is_active: Optional[bool] = Field(default=None, validation_alias=AliasChoices("is_active", "isActive"))


class PromptRow(BaseModel):
	id: int
	name: str
	prompt_text: str
	notes: Optional[str] = None
	language: Optional[str] = None
	sort_order: Optional[int] = None
	is_default: bool
	is_active: bool
	updated_at: datetime


def _prompt_row(row: AiPrompt) -> PromptRow:
	return PromptRow(
		id=row.id,
		name=row.name,
		prompt_text=row.prompt_text,
		notes=row.notes,
		language=row.language,
		sort_order=row.sort_order,
		is_default=row.is_default,
		is_active=row.is_active,
		updated_at=row.updated_at,
	)


def school_prompt(db: Session, school: School, prompt_id: int) -> AiPrompt:
	row = db.get(AiPrompt, prompt_id)
	if row is None or row.school_id != school.id:
		raise HTTPException(status_code=404, detail="prompt_not_found")
	return row


def _clear_default(db: Session, school: School, keep_id: Optional[int] = None) -> None:
	stmt = update(AiPrompt).where(AiPrompt.school_id == school.id, AiPrompt.is_default.is_(True))
	if keep_id is not None:
		stmt = stmt.where(AiPrompt.id != keep_id)
	db.execute(stmt.values(is_default=False))


@router.get("/ai-prompts/{slug}")
def list_prompts(school: School = Depends(get_school_by_slug), db: Session = Depends(get_db)):
	rows = (
		db.query(AiPrompt)
		.filter(AiPrompt.school_id == school.id)
		.order_by(
			AiPrompt.sort_order.is_(None),
			AiPrompt.sort_order,
			AiPrompt.is_default.desc(),
			AiPrompt.updated_at.desc(),
			AiPrompt.id.desc(),
		)
		.all()
	)
	return {"ok": True, "school_id": school.id, "prompts": [_prompt_row(r) for r in rows]}


@router.post("/ai-prompts/{slug}", status_code=201)
def create_prompt(
	req: PromptIn,
	school: School = Depends(get_school_by_slug),
	db: Session = Depends(get_db),
):
	if req.is_default:
		_clear_default(db, school)
	row = AiPrompt(
		school_id=school.id,
		name=req.name.strip(),
		prompt_text=req.prompt_text,
		notes=req.notes,
		language=req.language,
		sort_order=req.sort_order,
		is_default=req.is_default,
		is_active=req.is_active,
	)
	db.add(row)
	db.commit()
	logger.info("Created AI prompt %s for %s", row.id, school.slug)
	return {"ok": True, "prompt": _prompt_row(row)}


@router.put("/ai-prompts/{slug}/{prompt_id}")
def update_prompt(
	prompt_id: int,
	req: PromptPatch,
	school: School = Depends(get_school_by_slug),
	db: Session = Depends(get_db),
):
	row = school_prompt(db, school, prompt_id)
	changes = req.model_dump(exclude_none=True)
	if not changes:
		return {"ok": True, "prompt": _prompt_row(row), "unchanged": True}
	if changes.get("is_default"):
		_clear_default(db, school, keep_id=row.id)
	for name, value in changes.items():
		setattr(row, name, value)
	row.updated_at = datetime.utcnow()
	db.commit()
	return {"ok": True, "prompt": _prompt_row(row)}


@router.delete("/ai-prompts/{slug}/{prompt_id}")
def delete_prompt(
	prompt_id: int,
	school: School = Depends(get_school_by_slug),
	db: Session = Depends(get_db),
):
	row = school_prompt(db, school, prompt_id)
	in_use = db.query(AiReport.id).filter(AiReport.prompt_id == row.id).first() is not None
	if in_use:
		row.is_active = False
		row.is_default = False
		row.updated_at = datetime.utcnow()
		db.commit()
		logger.info("Deactivated AI prompt %s for %s (has reports)", prompt_id, school.slug)
		return {"ok": True, "id": prompt_id, "mode": "soft"}
	db.delete(row)
	db.commit()
	logger.info("Deleted AI prompt %s for %s", prompt_id, school.slug)
	return {"ok": True, "id": prompt_id, "mode": "hard"}
