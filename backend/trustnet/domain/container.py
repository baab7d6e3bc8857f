"""Service container wiring the trust engine components together."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional

from trustnet.domain import schemas
from trustnet.domain.badges import BadgeEngine, BadgeEvaluation, MetricRegistry
from trustnet.domain.caching import TrustReadCache
from trustnet.domain.config import ConfigProvider, TrustConfig, file_loader
from trustnet.domain.history import HistoryRecorder
from trustnet.domain.insights import TrustInsights
from trustnet.domain.leaderboard import Leaderboard, LeaderboardEntry, LeaderboardService
from trustnet.domain.models import LeaderboardScope, ScoreComponent, Vouch, VouchAction, VouchType
from trustnet.domain.repository import InMemoryTrustStore, TrustStore
from trustnet.domain.scoring import ScoreEngine, ScoreUpdate
from trustnet.domain.vouches import VouchLedger, VouchPage, VouchResult
from trustnet.infra.redis import RedisProxy
from trustnet.infra.trust_repo import PostgresTrustStore
from trustnet.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def _vouch_schema(vouch: Vouch) -> schemas.VouchSchema:
	return schemas.VouchSchema(**asdict(vouch))


def _score_schema(update: Optional[ScoreUpdate]) -> Optional[schemas.ScoreUpdateSchema]:
	if update is None:
		return None
	return schemas.ScoreUpdateSchema(
		previous_score=update.previous,
		trust_score=update.score,
		trust_level=update.level,
		changed=update.changed,
	)


def _result_schema(result: VouchResult) -> schemas.VouchResultSchema:
	return schemas.VouchResultSchema(vouch=_vouch_schema(result.vouch), score=_score_schema(result.score))


def _page_schema(page: VouchPage) -> schemas.VouchListSchema:
	return schemas.VouchListSchema(
		items=[_vouch_schema(vouch) for vouch in page.items],
		total=page.total,
		limit=page.limit,
		offset=page.offset,
	)


def _badge_schema(evaluation: BadgeEvaluation) -> schemas.BadgeSchema:
	next_tier = evaluation.next_tier
	return schemas.BadgeSchema(
		type=evaluation.definition.type,
		name=evaluation.definition.name,
		description=evaluation.definition.description,
		tier=evaluation.tier,
		count=evaluation.count,
		progress=evaluation.progress,
		earned_at=evaluation.earned_at,
		next_tier=schemas.NextTierSchema(tier=next_tier.tier, threshold=next_tier.threshold, remaining=next_tier.remaining)
		if next_tier
		else None,
	)


def _entry_schema(entry: LeaderboardEntry) -> schemas.LeaderboardEntrySchema:
	return schemas.LeaderboardEntrySchema(**asdict(entry))


def _leaderboard_schema(board: Leaderboard) -> schemas.LeaderboardSchema:
	return schemas.LeaderboardSchema(
		scope=board.scope,
		community_id=board.community_id,
		total=board.total,
		entries=[_entry_schema(entry) for entry in board.entries],
		user_rank=_entry_schema(board.user_rank) if board.user_rank else None,
	)


def build_store(config: Settings) -> TrustStore:
	if config.trust_store_backend == "postgres":
		return PostgresTrustStore(config)
	return InMemoryTrustStore()


class TrustService:
	"""Facade exposing every trust engine operation with an explicit lifecycle."""

	def __init__(
		self,
		store: TrustStore,
		*,
		config: ConfigProvider | None = None,
		app_settings: Settings | None = None,
		redis: RedisProxy | None = None,
		registry: MetricRegistry | None = None,
	) -> None:
		cfg = app_settings or default_settings
		self.settings = cfg
		self.store = store
		self.config = config or ConfigProvider(
			file_loader(cfg.trust_config_path) if cfg.trust_config_path else None,
			timeout=cfg.trust_config_timeout_seconds,
		)
		self.cache = TrustReadCache(redis, stale_ttl=cfg.cache_stale_ttl_seconds)
		self.recorder = HistoryRecorder(store, max_queue=cfg.history_queue_size)
		self.scores = ScoreEngine(store, self.config, self.recorder, on_change=self.cache.invalidate)
		self.ledger = VouchLedger(store, self.config, self.scores)
		self.insights = TrustInsights(store, self.config, self.scores)
		self.badges = BadgeEngine(
			store,
			self.config,
			registry=registry,
			cache=self.cache,
			cache_ttl=cfg.badge_cache_ttl_seconds,
			read_timeout=cfg.trust_read_timeout_seconds,
		)
		self.leaderboards = LeaderboardService(store)

	async def open(self) -> None:
		await self.store.open()
		await self.config.reload()
		self.recorder.start()
		logger.info("trust service opened", extra={"config_version": self.config.snapshot_version})

	async def close(self) -> None:
		await self.recorder.close()
		await self.store.close()

	async def __aenter__(self) -> "TrustService":
		await self.open()
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.close()

	async def reload_config(self) -> TrustConfig:
		snapshot = await self.config.reload()
		await self.cache.invalidate()
		return snapshot

	# --- Vouch ledger ---

	async def request_vouch(
		self,
		voucher_id: str,
		vouchee_id: str,
		vouch_type: VouchType | str,
		message: Optional[str] = None,
		community_id: Optional[str] = None,
	) -> schemas.VouchResultSchema:
		result = await self.ledger.request_vouch(voucher_id, vouchee_id, vouch_type, message, community_id)
		return _result_schema(result)

	async def respond_to_vouch_request(
		self,
		vouch_id: str,
		actor_id: str,
		action: VouchAction | str,
		downgrade_to: VouchType | str | None = None,
	) -> schemas.VouchResultSchema:
		result = await self.ledger.respond_to_vouch_request(vouch_id, actor_id, action, downgrade_to)
		return _result_schema(result)

	async def revoke_vouch(self, vouch_id: str, actor_id: str, reason: Optional[str] = None) -> schemas.VouchResultSchema:
		return _result_schema(await self.ledger.revoke_vouch(vouch_id, actor_id, reason))

	async def create_community_vouch(
		self,
		user_id: str,
		community_id: str,
		admin_id: str,
		message: Optional[str] = None,
	) -> schemas.VouchResultSchema:
		return _result_schema(await self.ledger.create_community_vouch(user_id, community_id, admin_id, message))

	async def get_vouches_received(self, user_id: str, **filters) -> schemas.VouchListSchema:
		return _page_schema(await self.ledger.get_vouches_received(user_id, **filters))

	async def get_vouches_given(self, user_id: str, **filters) -> schemas.VouchListSchema:
		return _page_schema(await self.ledger.get_vouches_given(user_id, **filters))

	async def get_vouch_limits(self, user_id: str) -> schemas.VouchLimitsSchema:
		limits = await self.ledger.get_vouch_limits(user_id)
		return schemas.VouchLimitsSchema(
			limits={vouch_type: schemas.VouchLimitSchema(**entry) for vouch_type, entry in limits.items()},
			can_receive_more=any(entry["available"] > 0 for entry in limits.values()),
		)

	async def get_vouch_summary(self, user_id: str) -> schemas.VouchSummarySchema:
		return schemas.VouchSummarySchema(**await self.ledger.get_vouch_summary(user_id))

	# --- Scores ---

	async def recalculate(
		self,
		user_id: str,
		*,
		reason: str = "Activity updated",
		component: ScoreComponent | None = ScoreComponent.ACTIVITY,
	) -> schemas.ScoreUpdateSchema:
		"""Recompute on demand when collaborators report activity or trust-moment changes."""
		update = await self.scores.recompute(user_id, reason=reason, component=component)
		return _score_schema(update)  # type: ignore[return-value]

	async def get_trust_score_detail(self, user_id: str) -> schemas.TrustScoreDetailSchema:
		return await self.insights.get_trust_score_detail(user_id)

	async def get_suggestions(self, user_id: str) -> schemas.SuggestionsSchema:
		return await self.insights.get_suggestions(user_id)

	async def get_trust_score_history(self, user_id: str, days: int | None = None) -> schemas.TrustScoreHistorySchema:
		return await self.insights.get_trust_score_history(user_id, days)

	async def get_trust_dashboard(self, user_id: str) -> schemas.TrustDashboardSchema:
		return await self.insights.get_trust_dashboard(user_id)

	# --- Read models ---

	async def get_leaderboard(
		self,
		requester_id: Optional[str] = None,
		scope: LeaderboardScope | str = LeaderboardScope.GLOBAL,
		community_id: Optional[str] = None,
		limit: int = 100,
	) -> schemas.LeaderboardSchema:
		async def _build() -> dict:
			board = await self.leaderboards.build(requester_id, scope, community_id, limit)
			return _leaderboard_schema(board).model_dump(mode="json")

		scope_value = scope.value if isinstance(scope, LeaderboardScope) else str(scope)
		key = f"leaderboard:{scope_value}:{community_id or '-'}:{requester_id or '-'}:{limit}"
		payload = await self.cache.get_or_build(key, ttl=self.settings.leaderboard_cache_ttl_seconds, builder=_build)
		return schemas.LeaderboardSchema.model_validate(payload)

	async def get_badges(self, user_id: str) -> schemas.BadgesSchema:
		version = self.config.snapshot_version

		def _render(evaluations: list[BadgeEvaluation]) -> dict:
			badges = [_badge_schema(evaluation) for evaluation in evaluations]
			return schemas.BadgesSchema(
				user_id=user_id,
				config_version=version,
				earned=[badge for badge in badges if badge.tier is not None],
				in_progress=[badge for badge in badges if badge.tier is None],
			).model_dump(mode="json")

		payload = await self.badges.get_badges(user_id, render=_render)
		return schemas.BadgesSchema.model_validate(payload)


def build_trust_service(app_settings: Settings | None = None, *, redis: RedisProxy | None = None) -> TrustService:
	cfg = app_settings or default_settings
	return TrustService(build_store(cfg), app_settings=cfg, redis=redis)
