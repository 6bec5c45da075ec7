from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from starlette.concurrency import run_in_threadpool

from .admission_store import Admission, AdmissionStore, PlaceholderRecord
from .keys import SubmissionContext, derive_key, parse_context
from .single_flight import SingleFlight


logger = logging.getLogger(__name__)


class PlaceholderService:
	"""Hands out one submission id per (school, student, question) attempt.

	Concurrent intake requests for the same attempt share one database
	round-trip inside this process; requests from other processes are
	deduplicated by the store's pending-key index.
	"""

	def __init__(self, store: AdmissionStore, coordinator: Optional[SingleFlight[Admission]] = None) -> None:
		self.store = store
		self.coordinator = coordinator or SingleFlight()

	async def admit(self, context: Mapping[str, Any] | SubmissionContext) -> Admission:
		ctx = parse_context(context)
		key = derive_key(ctx)

		async def _insert() -> Admission:
			return await run_in_threadpool(self.store.try_insert, key, ctx)

		# StorageUnavailable propagates; retry policy belongs to the caller
		admission = await self.coordinator.run_exclusive(key.value, _insert)
		logger.debug("admission for %s -> submission %s (created=%s)", key.parts, admission.id, admission.created)
		return admission

	async def get_or_create(self, context: Mapping[str, Any] | SubmissionContext) -> int:
		admission = await self.admit(context)
		return admission.id

	async def finalize(self, submission_id: int, scores: Optional[Mapping[str, Any]] = None) -> PlaceholderRecord:
		return await run_in_threadpool(self.store.finalize, submission_id, scores)

	async def abandon(self, submission_id: int) -> PlaceholderRecord:
		return await run_in_threadpool(self.store.abandon, submission_id)

	async def withdraw(self, submission_id: int) -> bool:
		return await run_in_threadpool(self.store.withdraw, submission_id)

	async def get(self, submission_id: int) -> PlaceholderRecord:
		return await run_in_threadpool(self.store.get, submission_id)
