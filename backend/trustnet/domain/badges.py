"""Badge engine: generic tier evaluation over pluggable metric fetchers."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from trustnet.domain import policy
from trustnet.domain.caching import TrustReadCache
from trustnet.domain.config import BadgeDefinition, ConfigProvider, TrustConfig
from trustnet.domain.exceptions import NotFoundError
from trustnet.domain.models import (
	COUNTED_STATUSES,
	TIER_ORDER,
	AccountabilityImpact,
	BadgeTier,
	User,
	utcnow,
)
from trustnet.domain.repository import TrustRepository, TrustStore
from trustnet.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MetricContext:
	repo: TrustRepository
	user: User
	config: TrustConfig
	definition: BadgeDefinition
	now: datetime


@dataclass(slots=True)
class MetricValue:
	count: int
	earned_at: Optional[datetime] = None


MetricFetcher = Callable[[MetricContext], Awaitable[MetricValue]]


@dataclass(slots=True)
class NextTier:
	tier: BadgeTier
	threshold: int
	remaining: int


@dataclass(slots=True)
class BadgeEvaluation:
	definition: BadgeDefinition
	count: int
	tier: Optional[BadgeTier]
	next_tier: Optional[NextTier]
	progress: int
	earned_at: Optional[datetime] = None

	@property
	def earned(self) -> bool:
		return self.tier is not None


def evaluate(definition: BadgeDefinition, count: int) -> tuple[Optional[BadgeTier], Optional[NextTier], int]:
	"""Highest tier met, the next tier to reach, and progress toward it in percent."""
	awarded: Optional[BadgeTier] = None
	for tier in TIER_ORDER:
		if count >= definition.threshold(tier):
			awarded = tier
	if awarded is None:
		target = TIER_ORDER[0]
	elif awarded == TIER_ORDER[-1]:
		return awarded, None, 100
	else:
		target = TIER_ORDER[TIER_ORDER.index(awarded) + 1]
	threshold = definition.threshold(target)
	floor_value = definition.threshold(awarded) if awarded else 0
	span = threshold - floor_value
	progress = int((count - floor_value) / span * 100) if span > 0 else 0
	return awarded, NextTier(tier=target, threshold=threshold, remaining=max(0, threshold - count)), max(0, min(100, progress))


class MetricRegistry:
	"""Maps metric names used in badge configuration to fetchers."""

	def __init__(self) -> None:
		self._fetchers: dict[str, MetricFetcher] = {}

	def register(self, name: str, fetcher: MetricFetcher) -> None:
		self._fetchers[name] = fetcher

	def get(self, name: str) -> MetricFetcher | None:
		return self._fetchers.get(name)

	def names(self) -> list[str]:
		return sorted(self._fetchers)


async def _vouches_given(ctx: MetricContext) -> MetricValue:
	vouches, total = await ctx.repo.list_vouches(voucher_id=ctx.user.id, statuses=COUNTED_STATUSES)
	approved = [vouch.approved_at or vouch.created_at for vouch in vouches]
	return MetricValue(count=total, earned_at=min(approved) if approved else None)


async def _connections(ctx: MetricContext) -> MetricValue:
	stat = await ctx.repo.get_user_stat(ctx.user.id)
	return MetricValue(count=stat.connections_accepted if stat else 0)


async def _communities(ctx: MetricContext) -> MetricValue:
	stat = await ctx.repo.get_user_stat(ctx.user.id)
	return MetricValue(count=stat.communities_joined if stat else 0)


async def _events_attended(ctx: MetricContext) -> MetricValue:
	stat = await ctx.repo.get_user_stat(ctx.user.id)
	return MetricValue(count=stat.events_attended if stat else 0)


async def _trust_score(ctx: MetricContext) -> MetricValue:
	count = math.floor(ctx.user.trust_score)
	bronze = ctx.definition.threshold(BadgeTier.BRONZE)
	earned_at = None
	if count >= bronze:
		for entry in await ctx.repo.list_history(ctx.user.id):
			if entry.score >= bronze:
				earned_at = entry.timestamp
				break
	return MetricValue(count=count, earned_at=earned_at)


async def _reliable(ctx: MetricContext) -> MetricValue:
	stat = await ctx.repo.get_user_stat(ctx.user.id)
	if stat is None or policy.attendance_reliability(stat) < ctx.config.reliability_threshold:
		return MetricValue(count=0)
	return MetricValue(count=stat.events_attended)


async def _positive_impact(ctx: MetricContext) -> MetricValue:
	logs = await ctx.repo.list_accountability(ctx.user.id, AccountabilityImpact.POSITIVE)
	return MetricValue(count=len(logs), earned_at=min((log.created_at for log in logs), default=None))


async def _membership_days(ctx: MetricContext) -> MetricValue:
	days = max(0, (ctx.now - ctx.user.created_at).days)
	bronze = ctx.definition.threshold(BadgeTier.BRONZE)
	earned_at = ctx.user.created_at + timedelta(days=bronze) if days >= bronze else None
	return MetricValue(count=days, earned_at=earned_at)


def default_registry() -> MetricRegistry:
	registry = MetricRegistry()
	registry.register("VOUCHER", _vouches_given)
	registry.register("CONNECTOR", _connections)
	registry.register("COMMUNITY_BUILDER", _communities)
	registry.register("EVENT_ENTHUSIAST", _events_attended)
	registry.register("TRUST_LEADER", _trust_score)
	registry.register("RELIABLE", _reliable)
	registry.register("IMPACT_MAKER", _positive_impact)
	registry.register("LONG_STANDING", _membership_days)
	return registry


class BadgeEngine:
	"""Evaluates every configured badge for a user; a read-only consumer of state."""

	def __init__(
		self,
		store: TrustStore,
		config: ConfigProvider,
		*,
		registry: MetricRegistry | None = None,
		cache: TrustReadCache | None = None,
		cache_ttl: int = 120,
		read_timeout: float = 2.0,
	) -> None:
		self._store = store
		self._config = config
		self.registry = registry or default_registry()
		self._cache = cache
		self._cache_ttl = cache_ttl
		self._read_timeout = read_timeout

	async def evaluate_user(self, user_id: str, *, now: datetime | None = None) -> list[BadgeEvaluation]:
		repo = self._store.reader()
		user = await repo.get_user(user_id)
		if user is None:
			raise NotFoundError("user_not_found")
		cfg = self._config.current()
		now = now or utcnow()
		results: list[BadgeEvaluation] = []
		for definition in cfg.badges:
			fetcher = self.registry.get(definition.metric_name)
			if fetcher is None:
				logger.warning("no metric fetcher for badge", extra={"badge": definition.type, "metric": definition.metric_name})
				continue
			ctx = MetricContext(repo=repo, user=user, config=cfg, definition=definition, now=now)
			try:
				value = await asyncio.wait_for(fetcher(ctx), timeout=self._read_timeout)
			except asyncio.TimeoutError:
				obs_metrics.inc_badge_metric_failure(definition.type, "timeout")
				logger.warning(
					"badge metric read timed out; skipping badge",
					extra={"badge": definition.type, "metric": definition.metric_name, "timeout_s": self._read_timeout},
				)
				continue
			except Exception:
				obs_metrics.inc_badge_metric_failure(definition.type, "error")
				logger.exception(
					"badge metric read failed; skipping badge",
					extra={"badge": definition.type, "metric": definition.metric_name},
				)
				continue
			tier, next_tier, progress = evaluate(definition, value.count)
			obs_metrics.inc_badge_evaluation(definition.type, tier.value if tier else None)
			results.append(
				BadgeEvaluation(
					definition=definition,
					count=value.count,
					tier=tier,
					next_tier=next_tier,
					progress=progress,
					earned_at=value.earned_at if tier else None,
				)
			)
		return results

	async def get_badges(self, user_id: str, *, render: Callable[[list[BadgeEvaluation]], dict] | None = None):
		"""Evaluate badges, optionally through the read cache with a JSON renderer."""
		if self._cache is None or render is None:
			return await self.evaluate_user(user_id)

		async def _build() -> dict:
			return render(await self.evaluate_user(user_id))

		version = self._config.snapshot_version
		return await self._cache.get_or_build(f"badges:{user_id}:cfg{version}", ttl=self._cache_ttl, builder=_build)
