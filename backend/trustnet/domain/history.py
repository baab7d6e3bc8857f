"""Append-only recorder for trust score changes.

Writes are a best-effort side channel: `record()` enqueues the entry and
returns a future that resolves to the persisted entry, or to ``None`` when the
write failed. Failures are logged and counted; they never reach the caller
that triggered the score change.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from trustnet.domain.models import HistoryEntry
from trustnet.domain.repository import TrustStore
from trustnet.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Job:
	entry: HistoryEntry
	future: "asyncio.Future[Optional[HistoryEntry]]"


class HistoryRecorder:
	"""Single FIFO worker so entries land in the order they were recorded."""

	def __init__(self, store: TrustStore, *, max_queue: int = 1000) -> None:
		self._store = store
		self._queue: asyncio.Queue[_Job | None] = asyncio.Queue(maxsize=max_queue)
		self._worker: asyncio.Task[None] | None = None

	@property
	def running(self) -> bool:
		return self._worker is not None and not self._worker.done()

	def start(self) -> None:
		if self.running:
			return
		self._queue = asyncio.Queue(maxsize=self._queue.maxsize)
		self._worker = asyncio.create_task(self._run(), name="trustnet-history-recorder")

	def record(self, entry: HistoryEntry) -> "asyncio.Future[Optional[HistoryEntry]]":
		"""Queue an entry; the returned future may be awaited or ignored."""
		loop = asyncio.get_running_loop()
		future: asyncio.Future[Optional[HistoryEntry]] = loop.create_future()
		if not self.running:
			self.start()
		try:
			self._queue.put_nowait(_Job(entry=entry, future=future))
		except asyncio.QueueFull:
			obs_metrics.inc_history_failure()
			logger.error(
				"trust history queue full; dropping entry",
				extra={"user_id": entry.user_id, "score": entry.score, "previous_score": entry.previous_score},
			)
			future.set_result(None)
		return future

	async def flush(self) -> None:
		"""Wait until every queued entry has been written or dropped."""
		if self.running:
			await self._queue.join()

	async def close(self) -> None:
		if not self.running:
			return
		await self._queue.join()
		await self._queue.put(None)
		assert self._worker is not None
		await self._worker
		self._worker = None

	async def _run(self) -> None:
		while True:
			job = await self._queue.get()
			try:
				if job is None:
					return
				await self._write(job)
			finally:
				self._queue.task_done()

	async def _write(self, job: _Job) -> None:
		entry = job.entry
		try:
			await self._store.reader().append_history(entry)
		except Exception:
			obs_metrics.inc_history_failure()
			logger.exception(
				"trust history write failed",
				extra={
					"user_id": entry.user_id,
					"score": entry.score,
					"previous_score": entry.previous_score,
					"component": entry.component.value if entry.component else None,
				},
			)
			if not job.future.done():
				job.future.set_result(None)
			return
		obs_metrics.inc_history_write()
		if not job.future.done():
			job.future.set_result(entry)
