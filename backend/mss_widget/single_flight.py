"""In-process single-flight execution keyed by dedup key.

If a call for key "v1:abc" is already running and another arrives for the
same key, the second awaits the first instead of running a duplicate. This is
only an optimisation: each worker process has its own instance and the
database index remains the authoritative guard.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Dict, Generic, List, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class SingleFlight(Generic[T]):
	def __init__(self) -> None:
		self._flights: Dict[str, asyncio.Task] = {}

	async def run_exclusive(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
		"""Run ``fn`` for ``key`` unless a run is already in flight, then share it.

		The shared task is shielded, so cancelling a caller (the one that
		started it included) abandons only that caller's wait. When the
		shared run fails, its starter gets the exception and every caller
		that merely joined it retries; one of them starts the next run.
		"""
		while True:
			task = self._flights.get(key)
			owner = task is None
			if owner:
				task = asyncio.ensure_future(self._fly(key, fn))
				task.add_done_callback(_consume_exception)
				self._flights[key] = task
			try:
				return await asyncio.shield(task)
			except Exception:
				if owner:
					raise
				logger.debug("in-flight call for %s failed, retrying", key)

	async def _fly(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
		try:
			return await fn()
		finally:
			if self._flights.get(key) is asyncio.current_task():
				del self._flights[key]

	@property
	def in_flight_keys(self) -> List[str]:
		return list(self._flights.keys())


def _consume_exception(task: "asyncio.Task[Any]") -> None:
	# Every waiter may have gone away; mark the exception as retrieved
	if not task.cancelled():
		task.exception()
