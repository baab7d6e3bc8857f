"""Score engine: recomputes trust scores and hands changes to the history recorder."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from trustnet.domain import policy
from trustnet.domain.config import ConfigProvider
from trustnet.domain.exceptions import NotFoundError
from trustnet.domain.history import HistoryRecorder
from trustnet.domain.models import HistoryEntry, ScoreComponent, TrustLevel, utcnow
from trustnet.domain.repository import TrustRepository, TrustStore, score_lock_key
from trustnet.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

InvalidationHook = Callable[[], Awaitable[None]]


@dataclass(slots=True)
class ScoreUpdate:
	user_id: str
	previous: float
	score: float
	level: TrustLevel
	changed: bool
	history: Optional["asyncio.Future[Optional[HistoryEntry]]"] = None


class ScoreEngine:
	"""Computes the composite score and stores it under a per-user lock."""

	def __init__(
		self,
		store: TrustStore,
		config: ConfigProvider,
		recorder: HistoryRecorder,
		*,
		on_change: Optional[InvalidationHook] = None,
	) -> None:
		self._store = store
		self._config = config
		self._recorder = recorder
		self._on_change = on_change

	async def compute_breakdown(self, user_id: str, repo: TrustRepository | None = None) -> policy.ScoreBreakdown:
		repo = repo or self._store.reader()
		vouches, _ = await repo.list_vouches(vouchee_id=user_id)
		stat = await repo.get_user_stat(user_id)
		moments = await repo.list_public_trust_moments(user_id)
		return policy.compute_breakdown(vouches, stat, moments, self._config.current().vouch_weights)

	async def compute_score(self, user_id: str) -> float:
		breakdown = await self.compute_breakdown(user_id)
		return breakdown.total

	async def recompute(
		self,
		user_id: str,
		*,
		reason: str,
		component: ScoreComponent | None = None,
		related_entity_type: str | None = None,
		related_entity_id: str | None = None,
	) -> ScoreUpdate:
		component_label = component.value if component else "manual"
		async with self._store.transaction(score_lock_key(user_id)) as repo:
			user = await repo.get_user(user_id)
			if user is None:
				raise NotFoundError("user_not_found")
			breakdown = await self.compute_breakdown(user_id, repo)
			score = breakdown.total
			level = policy.calculate_trust_level(score)
			previous = user.trust_score
			changed = score != previous
			if not changed and level == user.trust_level:
				obs_metrics.inc_score_recompute(component_label, "unchanged")
				return ScoreUpdate(user_id=user_id, previous=previous, score=score, level=level, changed=False)
			await repo.update_user_score(user_id, score, level, utcnow())
			history = None
			if changed:
				# Enqueued while the user lock is held so the FIFO recorder sees entries in score order
				history = self._recorder.record(
					HistoryEntry(
						user_id=user_id,
						score=score,
						previous_score=previous,
						reason=reason,
						component=component,
						related_entity_type=related_entity_type,
						related_entity_id=related_entity_id,
					)
				)

		if changed:
			obs_metrics.observe_score_delta(score - previous)
			await self._invalidate()
		obs_metrics.inc_score_recompute(component_label, "changed" if changed else "level_only")
		logger.info(
			"trust score recomputed",
			extra={
				"user_id": user_id,
				"score": score,
				"previous_score": previous,
				"trust_level": level.value,
				"component": component_label,
			},
		)
		return ScoreUpdate(user_id=user_id, previous=previous, score=score, level=level, changed=changed, history=history)

	async def apply_override(self, user_id: str, score: float, *, reason: str) -> ScoreUpdate:
		"""Store an externally decided score (decay policies) with the usual audit entry."""
		score = policy.clamp_score(score)
		level = policy.calculate_trust_level(score)
		async with self._store.transaction(score_lock_key(user_id)) as repo:
			user = await repo.get_user(user_id)
			if user is None:
				raise NotFoundError("user_not_found")
			previous = user.trust_score
			if score == previous:
				return ScoreUpdate(user_id=user_id, previous=previous, score=score, level=level, changed=False)
			await repo.update_user_score(user_id, score, level, utcnow())
			history = self._recorder.record(
				HistoryEntry(user_id=user_id, score=score, previous_score=previous, reason=reason)
			)
		obs_metrics.inc_score_recompute("override", "changed")
		await self._invalidate()
		return ScoreUpdate(user_id=user_id, previous=previous, score=score, level=level, changed=True, history=history)

	async def _invalidate(self) -> None:
		if self._on_change is None:
			return
		try:
			await self._on_change()
		except Exception:
			logger.exception("read cache invalidation failed")
