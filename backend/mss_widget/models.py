from __future__ import annotations
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Integer, Float, Text, ForeignKey, Index, UniqueConstraint, text
from .db import Base


STATUS_PENDING = "pending"
STATUS_FINALIZED = "finalized"
STATUS_ABANDONED = "abandoned"


class School(Base):
	__tablename__ = "schools"
	id = Column(Integer, primary_key=True, autoincrement=True)
	slug = Column(String(128), unique=True, index=True, nullable=False)
	name = Column(String(256), nullable=False)
	# 0 means unlimited
	daily_limit = Column(Integer, default=0, nullable=False)
	# JSON string: {"config": {...}, "form": {...}} used by the widget bootstrap
	settings = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Submission(Base):
	__tablename__ = "submissions"
	__table_args__ = (
		# At most one pending placeholder per dedup key; terminal rows free the key
		Index(
			"uq_submissions_pending_key",
			"dedup_key",
			unique=True,
			sqlite_where=text("status = 'pending'"),
			postgresql_where=text("status = 'pending'"),
		),
		Index("ix_submissions_school_created", "school_id", "created_at"),
	)

	id = Column(Integer, primary_key=True, autoincrement=True)
	school_id = Column(Integer, ForeignKey("schools.id"), nullable=False)
	student_id = Column(Integer, nullable=True)
	question_id = Column(Integer, nullable=True)
	dedup_key = Column(String(80), nullable=False)
	status = Column(String(16), default=STATUS_PENDING, nullable=False)

	help_level = Column(Integer, nullable=True)
	help_surface = Column(String(64), nullable=True)
	widget_variant = Column(String(128), nullable=True)
	dashboard_variant = Column(String(128), nullable=True)
	payload = Column(Text, nullable=True)  # JSON snapshot of the intake context

	# Filled in by the scoring completion event
	toefl = Column(Float, nullable=True)
	ielts = Column(Float, nullable=True)
	pte = Column(Float, nullable=True)
	cefr = Column(String(8), nullable=True)
	transcript = Column(Text, nullable=True)
	wpm = Column(Float, nullable=True)
	meta = Column(Text, nullable=True)  # JSON string

	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	finalized_at = Column(DateTime, nullable=True)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Question(Base):
	__tablename__ = "questions"
	id = Column(Integer, primary_key=True, autoincrement=True)
	school_id = Column(Integer, ForeignKey("schools.id"), nullable=False, index=True)
	question = Column(Text, nullable=False)
	position = Column(Integer, default=0, nullable=False)
	is_public = Column(Boolean, default=True, nullable=False)
	is_active = Column(Boolean, default=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AiPrompt(Base):
	__tablename__ = "ai_prompts"
	id = Column(Integer, primary_key=True, autoincrement=True)
	school_id = Column(Integer, ForeignKey("schools.id"), nullable=False, index=True)
	name = Column(String(256), nullable=False)
	prompt_text = Column(Text, nullable=False)
	notes = Column(Text, nullable=True)
	language = Column(String(16), nullable=True)
	sort_order = Column(Integer, nullable=True)
	is_default = Column(Boolean, default=False, nullable=False)
	# Prompts referenced by a report are deactivated instead of deleted
	is_active = Column(Boolean, default=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AiReport(Base):
	__tablename__ = "ai_reports"
	__table_args__ = (UniqueConstraint("submission_id", "prompt_id", name="uq_ai_reports_submission_prompt"),)

	id = Column(Integer, primary_key=True, autoincrement=True)
	submission_id = Column(Integer, ForeignKey("submissions.id"), nullable=False, index=True)
	prompt_id = Column(Integer, ForeignKey("ai_prompts.id"), nullable=False, index=True)
	# Hash of the rendered prompt the report was generated from
	prompt_hash = Column(String(64), nullable=False)
	model = Column(String(128), nullable=True)
	report_text = Column(Text, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class EmbedEvent(Base):
	__tablename__ = "embed_events"
	id = Column(Integer, primary_key=True, autoincrement=True)
	school_id = Column(Integer, ForeignKey("schools.id"), nullable=True, index=True)
	event_type = Column(String(64), nullable=False)
	message = Column(Text, nullable=True)
	detail = Column(Text, nullable=True)  # JSON string
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
