"""Dedup keys for submission placeholders.

A key identifies "the same submission attempt": one school, one student (or
no student), one question (or no question). Missing ids are encoded as JSON
``null`` inside a canonical array, so an anonymous attempt never shares a key
with a student whose id happens to be ``0`` or the string ``"null"``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidContext


KEY_VERSION = "v1"


class SubmissionContext(BaseModel):
	model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

	tenant_id: int = Field(gt=0, validation_alias=AliasChoices("tenant_id", "tenantId", "school_id", "schoolId"))
	subject_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("subject_id", "subjectId", "student_id", "studentId"))
	task_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("task_id", "taskId", "question_id", "questionId"))

	# Carried into the stored payload, never part of the key
	help_level: Optional[int] = None
	help_surface: Optional[str] = None
	widget_variant: Optional[str] = None
	dashboard_variant: Optional[str] = None
	extra: Dict[str, Any] = Field(default_factory=dict)

	@field_validator("tenant_id", "subject_id", "task_id", mode="before")
	@classmethod
	def _reject_non_scalar_ids(cls, value: Any) -> Any:
		if isinstance(value, bool):
			raise ValueError("boolean is not a valid id")
		if isinstance(value, str):
			value = value.strip()
			if value == "":
				return None
		return value

	def to_payload(self) -> Dict[str, Any]:
		# Unknown caller fields are kept (model_dump includes model_extra)
		return self.model_dump(mode="json")


@dataclass(frozen=True)
class DedupKey:
	value: str
	parts: Tuple[Any, ...]

	def __str__(self) -> str:
		return self.value


def parse_context(data: Mapping[str, Any] | SubmissionContext) -> SubmissionContext:
	"""Validate a loosely shaped intake mapping into a SubmissionContext.

	Raises InvalidContext when the tenant is missing or any id is malformed.
	"""
	if isinstance(data, SubmissionContext):
		return data
	try:
		return SubmissionContext.model_validate(dict(data))
	except ValidationError as e:
		fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
		raise InvalidContext(f"invalid submission context: {', '.join(fields) or 'payload'}") from e
	except (TypeError, ValueError) as e:
		raise InvalidContext(f"invalid submission context: {e}") from e


def derive_key(context: SubmissionContext) -> DedupKey:
	parts = (context.tenant_id, context.subject_id, context.task_id)
	canonical = json.dumps(["submission", *parts], separators=(",", ":"))
	digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
	return DedupKey(value=f"{KEY_VERSION}:{digest}", parts=parts)
