from __future__ import annotations


class PlaceholderError(Exception):
	"""Base class for submission placeholder failures."""

	code = "placeholder_error"

	def __init__(self, message: str, *, retryable: bool = False) -> None:
		super().__init__(message)
		self.message = message
		self.retryable = retryable


class InvalidContext(PlaceholderError):
	"""The intake context lacks a field the dedup key depends on."""

	code = "invalid_context"


class UnknownTenant(InvalidContext):
	"""The database rejected the row because a referenced id does not exist."""

	code = "unknown_tenant"


class StorageUnavailable(PlaceholderError):
	"""Transient database failure; callers may retry with backoff."""

	code = "storage_unavailable"

	def __init__(self, message: str = "submission store unavailable") -> None:
		super().__init__(message, retryable=True)


class PlaceholderNotFound(PlaceholderError):
	code = "submission_not_found"

	def __init__(self, submission_id: int) -> None:
		super().__init__(f"submission {submission_id} not found")
		self.submission_id = submission_id


class PlaceholderStateError(PlaceholderError):
	"""Requested transition is not allowed from the record's current status."""

	code = "invalid_transition"

	def __init__(self, submission_id: int, current: str, target: str) -> None:
		super().__init__(f"submission {submission_id} is {current}; cannot become {target}")
		self.submission_id = submission_id
		self.current = current
		self.target = target
