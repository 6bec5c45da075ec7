from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timedelta

from starlette.concurrency import run_in_threadpool

from .admission_store import AdmissionStore
from .errors import StorageUnavailable


logger = logging.getLogger(__name__)


def abandon_stale_placeholders(store: AdmissionStore, max_age_minutes: int, *, now: datetime | None = None) -> int:
	# Pending rows that never received a scoring result free their key for a new attempt
	threshold = (now or datetime.utcnow()) - timedelta(minutes=max_age_minutes)
	removed = store.abandon_stale(threshold)
	if removed:
		logger.info("Abandoned %d stale submission placeholders older than %s", removed, threshold.isoformat())
	return removed


async def sweep_forever(store: AdmissionStore, *, interval_seconds: int, max_age_minutes: int) -> None:
	while True:
		try:
			await run_in_threadpool(abandon_stale_placeholders, store, max_age_minutes)
		except StorageUnavailable as e:
			logger.warning("placeholder sweep skipped: %s", e)
		await asyncio.sleep(interval_seconds)
