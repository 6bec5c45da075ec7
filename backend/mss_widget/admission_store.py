from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, Mapping, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import DisconnectionError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from .errors import InvalidContext, PlaceholderNotFound, PlaceholderStateError, StorageUnavailable, UnknownTenant
from .keys import DedupKey, SubmissionContext
from .models import STATUS_ABANDONED, STATUS_FINALIZED, STATUS_PENDING, Submission


logger = logging.getLogger(__name__)

SCORE_FIELDS = ("toefl", "ielts", "pte", "cefr", "transcript", "wpm", "meta")


@dataclass(frozen=True)
class Admission:
	"""Outcome of an admission attempt.

	``created`` is False when a pending row already held the key; ``id`` is then
	the id of that row.
	"""
	id: int
	created: bool
	key: Optional[DedupKey] = None


@dataclass(frozen=True)
class PlaceholderRecord:
	id: int
	key: str
	status: str
	school_id: int
	student_id: Optional[int]
	question_id: Optional[int]
	payload: Dict[str, Any]
	scores: Dict[str, Any]
	created_at: datetime
	finalized_at: Optional[datetime]
	help_level: Optional[int] = None
	help_surface: Optional[str] = None
	widget_variant: Optional[str] = None
	dashboard_variant: Optional[str] = None
	extra: Dict[str, Any] = field(default_factory=dict)


def _loads(raw: Optional[str]) -> Dict[str, Any]:
	if not raw:
		return {}
	try:
		data = json.loads(raw)
	except ValueError:
		return {}
	return data if isinstance(data, dict) else {}


def _to_record(row: Submission) -> PlaceholderRecord:
	scores = {name: getattr(row, name) for name in SCORE_FIELDS if name != "meta"}
	scores["meta"] = _loads(row.meta) if row.meta else None
	payload = _loads(row.payload)
	return PlaceholderRecord(
		id=row.id,
		key=row.dedup_key,
		status=row.status,
		school_id=row.school_id,
		student_id=row.student_id,
		question_id=row.question_id,
		payload=payload,
		scores=scores,
		created_at=row.created_at,
		finalized_at=row.finalized_at,
		help_level=row.help_level,
		help_surface=row.help_surface,
		widget_variant=row.widget_variant,
		dashboard_variant=row.dashboard_variant,
		extra=payload.get("extra") or {},
	)


def _is_pending_key_violation(exc: IntegrityError) -> bool:
	# postgres names the index; sqlite names the column
	message = str(exc.orig)
	return "uq_submissions_pending_key" in message or "submissions.dedup_key" in message


def _raise_rejected(exc: IntegrityError, key: DedupKey) -> None:
	message = str(exc.orig)
	logger.warning("placeholder for %s rejected by database: %s", key.parts, message)
	if "foreign key" in message.lower():
		raise UnknownTenant(f"unknown school or reference for {key.parts}") from exc
	raise InvalidContext(f"submission rejected for {key.parts}: {message}") from exc


class AdmissionStore:
	"""Durable placeholder rows guarded by the pending-key unique index.

	Every write is a single constrained statement; there is no lookup that
	decides whether to insert.
	"""

	def __init__(self, session_factory: sessionmaker, *, max_insert_attempts: int = 3) -> None:
		self._session_factory = session_factory
		self._max_insert_attempts = max_insert_attempts

	@contextmanager
	def _session(self) -> Iterator[Session]:
		try:
			with self._session_factory() as db:
				yield db
		except (OperationalError, InterfaceError, DisconnectionError) as e:
			logger.warning("submission store unavailable: %s", e)
			raise StorageUnavailable() from e

	def try_insert(self, key: DedupKey, context: SubmissionContext) -> Admission:
		for attempt in range(1, self._max_insert_attempts + 1):
			with self._session() as db:
				row = Submission(
					school_id=context.tenant_id,
					student_id=context.subject_id,
					question_id=context.task_id,
					dedup_key=key.value,
					status=STATUS_PENDING,
					help_level=context.help_level,
					help_surface=context.help_surface,
					widget_variant=context.widget_variant,
					dashboard_variant=context.dashboard_variant,
					payload=json.dumps(context.to_payload(), sort_keys=True),
				)
				db.add(row)
				try:
					db.commit()
				except IntegrityError as e:
					db.rollback()
					violation = e
				else:
					logger.info("Created submission placeholder %s for %s", row.id, key.parts)
					return Admission(id=row.id, created=True, key=key)

				existing_id = db.execute(
					select(Submission.id)
					.where(Submission.dedup_key == key.value, Submission.status == STATUS_PENDING)
					.limit(1)
				).scalar_one_or_none()
				if existing_id is not None:
					logger.info("Reusing submission placeholder %s for %s", existing_id, key.parts)
					return Admission(id=existing_id, created=False, key=key)
			if not _is_pending_key_violation(violation):
				_raise_rejected(violation, key)
			# The conflicting row reached a terminal state before we could read it
			logger.debug("placeholder for %s finished mid-admission, retrying (attempt %d)", key.parts, attempt)
		raise StorageUnavailable(f"could not admit placeholder for {key.parts} after {self._max_insert_attempts} attempts")

	def withdraw(self, submission_id: int) -> bool:
		"""Delete a placeholder that was admitted but must not be kept.

		Only pending rows are removed; returns False when nothing was deleted.
		"""
		with self._session() as db:
			res = db.execute(
				delete(Submission).where(Submission.id == submission_id, Submission.status == STATUS_PENDING)
			)
			db.commit()
			if res.rowcount:
				logger.info("Withdrew submission placeholder %s", submission_id)
			return bool(res.rowcount)

	def get(self, submission_id: int) -> PlaceholderRecord:
		with self._session() as db:
			row = db.get(Submission, submission_id)
			if row is None:
				raise PlaceholderNotFound(submission_id)
			return _to_record(row)

	def finalize(self, submission_id: int, scores: Optional[Mapping[str, Any]] = None) -> PlaceholderRecord:
		now = datetime.utcnow()
		values: Dict[str, Any] = {"status": STATUS_FINALIZED, "finalized_at": now, "updated_at": now}
		for name, value in (scores or {}).items():
			if name not in SCORE_FIELDS or value is None:
				continue
			values[name] = json.dumps(value, sort_keys=True) if name == "meta" else value
		return self._transition(submission_id, STATUS_FINALIZED, values)

	def abandon(self, submission_id: int) -> PlaceholderRecord:
		values = {"status": STATUS_ABANDONED, "updated_at": datetime.utcnow()}
		return self._transition(submission_id, STATUS_ABANDONED, values)

	def _transition(self, submission_id: int, target: str, values: Dict[str, Any]) -> PlaceholderRecord:
		with self._session() as db:
			res = db.execute(
				update(Submission)
				.where(Submission.id == submission_id, Submission.status == STATUS_PENDING)
				.values(**values)
			)
			db.commit()
			row = db.get(Submission, submission_id, populate_existing=True)
			if row is None:
				raise PlaceholderNotFound(submission_id)
			if res.rowcount:
				logger.info("Submission %s is now %s", submission_id, target)
			elif row.status != target:
				raise PlaceholderStateError(submission_id, row.status, target)
			return _to_record(row)

	def abandon_stale(self, older_than: datetime) -> int:
		with self._session() as db:
			res = db.execute(
				update(Submission)
				.where(Submission.status == STATUS_PENDING, Submission.created_at < older_than)
				.values(status=STATUS_ABANDONED, updated_at=datetime.utcnow())
			)
			db.commit()
			return res.rowcount or 0

	def count(
		self,
		*,
		key: Optional[DedupKey] = None,
		status: Optional[str] = None,
		school_id: Optional[int] = None,
		created_since: Optional[datetime] = None,
	) -> int:
		stmt = select(func.count(Submission.id))
		if key is not None:
			stmt = stmt.where(Submission.dedup_key == key.value)
		if status is not None:
			stmt = stmt.where(Submission.status == status)
		if school_id is not None:
			stmt = stmt.where(Submission.school_id == school_id)
		if created_since is not None:
			stmt = stmt.where(Submission.created_at >= created_since)
		with self._session() as db:
			return int(db.execute(stmt).scalar_one())
