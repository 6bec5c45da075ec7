from __future__ import annotations
import hashlib
import logging
import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import STATUS_FINALIZED, AiPrompt, AiReport, School, Submission
from .admin import school_prompt
from .deps import get_school_by_slug

router = APIRouter(prefix="/api/admin/reports", tags=["reports"])

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*\}\}")


class GenerateReportRequest(BaseModel):
	slug: str = Field(min_length=1)
	submission_id: int = Field(gt=0, validation_alias=AliasChoices("submission_id", "submissionId"))
	prompt_id: int = Field(gt=0, validation_alias=AliasChoices("prompt_id", "promptId", "ai_prompt_id", "aiPromptId"))
	force: bool = False


class ReportOut(BaseModel):
	ok: bool = True
	source: str
	submission_id: int
	prompt_id: int
	model: Optional[str] = None
	report_text: str


def render_prompt(template: str, variables: Dict[str, Any]) -> str:
	"""Substitute ``{{name}}`` markers; unknown or empty values render as blank."""
	def _sub(match: re.Match) -> str:
		value = variables.get(match.group(1))
		return "" if value is None else str(value)
	return _PLACEHOLDER_RE.sub(_sub, template)


def submission_variables(row: Submission) -> Dict[str, Any]:
	return {
		"student": row.student_id,
		"question": row.question_id,
		"transcript": row.transcript,
		"wpm": row.wpm,
		"cefr": row.cefr,
		"toefl": row.toefl,
		"ielts": row.ielts,
		"pte": row.pte,
	}


def _load_finalized(db: Session, school: School, submission_id: int) -> Submission:
	row = db.get(Submission, submission_id)
	if row is None or row.school_id != school.id:
		raise HTTPException(status_code=404, detail="submission_not_found")
	if row.status != STATUS_FINALIZED:
		raise HTTPException(status_code=409, detail="submission_not_scored")
	return row


def _prompt_hash(prompt: str) -> str:
	return hashlib.sha256(prompt.encode("utf-8")).hexdigest()


def _stored(db: Session, submission_id: int, prompt_id: int) -> Optional[AiReport]:
	return (
		db.query(AiReport)
		.filter(AiReport.submission_id == submission_id, AiReport.prompt_id == prompt_id)
		.first()
	)


@router.get("/existing")
def existing_report(
	submission_id: int = Query(..., gt=0),
	prompt_id: int = Query(..., gt=0),
	school: School = Depends(get_school_by_slug),
	db: Session = Depends(get_db),
):
	_load_finalized(db, school, submission_id)
	school_prompt(db, school, prompt_id)
	stored = _stored(db, submission_id, prompt_id)
	if stored is None:
		return {"ok": True, "exists": False}
	return {
		"ok": True,
		"exists": True,
		"report": {
			"prompt_id": stored.prompt_id,
			"report_text": stored.report_text,
			"model": stored.model,
			"created_at": stored.created_at.isoformat(),
		},
	}


@router.post("/generate", response_model=ReportOut)
async def generate_report(req: GenerateReportRequest, request: Request, db: Session = Depends(get_db)):
	school = get_school_by_slug(req.slug, db)
	prompt_row: AiPrompt = school_prompt(db, school, req.prompt_id)
	row = _load_finalized(db, school, req.submission_id)
	prompt = render_prompt(prompt_row.prompt_text, submission_variables(row))
	prompt_hash = _prompt_hash(prompt)

	# A report is reused until forced or until the prompt text changes
	stored = _stored(db, req.submission_id, req.prompt_id)
	if stored is not None and stored.prompt_hash == prompt_hash and not req.force:
		return ReportOut(
			source="cache",
			submission_id=req.submission_id,
			prompt_id=req.prompt_id,
			model=stored.model,
			report_text=stored.report_text,
		)
	if not prompt_row.is_active:
		raise HTTPException(status_code=409, detail="prompt_inactive")

	try:
		client = request.app.state.report_client_factory()
	except ValueError as e:
		raise HTTPException(status_code=503, detail=str(e))
	try:
		text = await client.generate(prompt)
	except Exception as e:
		logger.error("report generation failed for submission %s: %s", req.submission_id, e)
		raise HTTPException(status_code=502, detail="report_generation_failed")
	finally:
		await client.aclose()

	model = getattr(client, "model", None)
	if stored is None:
		stored = AiReport(submission_id=req.submission_id, prompt_id=req.prompt_id)
		db.add(stored)
	stored.prompt_hash = prompt_hash
	stored.model = model
	stored.report_text = text
	try:
		db.commit()
	except IntegrityError:
		# A concurrent request stored a report for this pair first; keep theirs
		db.rollback()
	logger.info("Generated report for submission %s with prompt %s", req.submission_id, req.prompt_id)
	return ReportOut(source="llm", submission_id=req.submission_id, prompt_id=req.prompt_id, model=model, report_text=text)
