"""Read models explaining a trust score: detail, suggestions, history and dashboard."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Optional, Sequence

from trustnet.domain import policy, schemas
from trustnet.domain.config import ConfigProvider, TrustConfig
from trustnet.domain.decay import decay_warning
from trustnet.domain.exceptions import NotFoundError, ValidationError
from trustnet.domain.models import HistoryEntry, TrustMoment, User, utcnow
from trustnet.domain.repository import TrustStore
from trustnet.domain.scoring import ScoreEngine

RECENT_CHANGES_DAYS = 7
RECENT_CHANGES_LIMIT = 10
MAX_HISTORY_DAYS = 365
SUGGESTION_LIMIT = 5
QUICK_WIN_LIMIT = 3
TOP_TAG_LIMIT = 10
RATING_SUGGESTION_BELOW = 4.5


def _percentage(score: float, maximum: float) -> int:
	return round(score / maximum * 100) if maximum else 0


def _plural(count: int, singular: str, plural: str) -> str:
	return singular if count == 1 else plural


def moment_statistics(moments: Sequence[TrustMoment], component: policy.TrustMomentsScore) -> schemas.TrustMomentStatsSchema:
	public = [moment for moment in moments if moment.is_public]
	if not public:
		return schemas.TrustMomentStatsSchema(
			distribution={"five_star": 0, "four_star": 0, "three_star": 0, "two_star": 0, "one_star": 0},
			sentiment={
				"positive": 0,
				"positive_percentage": 0,
				"neutral": 0,
				"neutral_percentage": 0,
				"negative": 0,
				"negative_percentage": 0,
			},
		)
	ratings = Counter(moment.rating for moment in public)
	total = len(public)
	positive = ratings[5] + ratings[4]
	neutral = ratings[3]
	negative = ratings[2] + ratings[1]
	tags: Counter[str] = Counter()
	for moment in public:
		tags.update(moment.tags)
	by_type = Counter(moment.moment_type or "general" for moment in public)
	# Ties in tag counts fall back to alphabetical order so the list is stable
	top_tags = sorted(tags.items(), key=lambda item: (-item[1], item[0]))[:TOP_TAG_LIMIT]
	return schemas.TrustMomentStatsSchema(
		total_moments=total,
		average_rating=policy.round1(component.average_rating),
		rating_score=policy.round1(component.rating_score),
		quantity_bonus=policy.round1(component.quantity_bonus),
		distribution={
			"five_star": ratings[5],
			"four_star": ratings[4],
			"three_star": ratings[3],
			"two_star": ratings[2],
			"one_star": ratings[1],
		},
		sentiment={
			"positive": positive,
			"positive_percentage": round(positive / total * 100),
			"neutral": neutral,
			"neutral_percentage": round(neutral / total * 100),
			"negative": negative,
			"negative_percentage": round(negative / total * 100),
		},
		by_moment_type=dict(by_type),
		top_tags=[schemas.TagCountSchema(tag=tag, count=count) for tag, count in top_tags],
	)


def breakdown_schema(
	breakdown: policy.ScoreBreakdown,
	activity_counts: dict[str, int],
	moments: Sequence[TrustMoment],
	cfg: TrustConfig,
) -> schemas.BreakdownSchema:
	vouches = breakdown.vouches
	activity = breakdown.activity
	weights = cfg.vouch_weights
	limits = cfg.max_vouches
	return schemas.BreakdownSchema(
		vouches=schemas.VouchesBreakdownSchema(
			score=policy.round1(vouches.total),
			max_score=policy.VOUCHES_MAX,
			percentage=_percentage(vouches.total, policy.VOUCHES_MAX),
			primary=schemas.SubScoreSchema(
				score=policy.round1(vouches.primary),
				max_score=weights.primary * policy.VOUCH_COMPONENT_FACTOR,
				count=vouches.primary_count,
				max_count=limits.primary,
			),
			secondary=schemas.SubScoreSchema(
				score=policy.round1(vouches.secondary),
				max_score=weights.secondary * policy.VOUCH_COMPONENT_FACTOR,
				count=vouches.secondary_count,
				max_count=limits.secondary,
			),
			community=schemas.SubScoreSchema(
				score=policy.round1(vouches.community),
				max_score=weights.community * policy.VOUCH_COMPONENT_FACTOR,
				count=vouches.community_count,
				max_count=limits.community,
			),
		),
		activity=schemas.ActivityBreakdownSchema(
			score=policy.round1(activity.total),
			max_score=policy.ACTIVITY_MAX,
			percentage=_percentage(activity.total, policy.ACTIVITY_MAX),
			events_attended=_activity_part(activity.events_attended, activity_counts["events_attended"], policy.EVENTS_ATTENDED_RULE),
			events_hosted=_activity_part(activity.events_hosted, activity_counts["events_hosted"], policy.EVENTS_HOSTED_RULE),
			communities_joined=_activity_part(
				activity.communities_joined, activity_counts["communities_joined"], policy.COMMUNITIES_JOINED_RULE
			),
			services_provided=_activity_part(
				activity.services_provided, activity_counts["services_provided"], policy.SERVICES_PROVIDED_RULE
			),
		),
		trust_moments=schemas.TrustMomentsBreakdownSchema(
			score=policy.round1(breakdown.trust_moments.total),
			max_score=policy.TRUST_MOMENTS_MAX,
			percentage=_percentage(breakdown.trust_moments.total, policy.TRUST_MOMENTS_MAX),
			statistics=moment_statistics(moments, breakdown.trust_moments),
		),
	)


def _activity_part(score: float, count: int, rule: tuple[float, float, int]) -> schemas.SubScoreSchema:
	_, cap, target = rule
	return schemas.SubScoreSchema(score=policy.round1(score), max_score=cap, count=count, target_count=target)


def build_suggestions(detail: schemas.TrustScoreDetailSchema) -> schemas.SuggestionsSchema:
	suggestions: list[schemas.SuggestionSchema] = []
	quick_wins: list[schemas.QuickWinSchema] = []
	vouches = detail.breakdown.vouches
	activity = detail.breakdown.activity
	moments = detail.breakdown.trust_moments.statistics

	if vouches.primary.count == 0:
		suggestions.append(
			schemas.SuggestionSchema(
				category="vouches",
				action="get_primary_vouch",
				title="Get a primary vouch",
				description="Ask someone who knows you well to vouch for you",
				potential_points=round(vouches.primary.max_score),
				priority="high",
			)
		)
	secondary_max = vouches.secondary.max_count or 0
	if vouches.secondary.count < secondary_max:
		remaining = secondary_max - vouches.secondary.count
		suggestions.append(
			schemas.SuggestionSchema(
				category="vouches",
				action="get_secondary_vouch",
				title=f"Get {remaining} more secondary {_plural(remaining, 'vouch', 'vouches')}",
				description="Ask trusted connections to vouch for you",
				potential_points=round(vouches.secondary.max_score / secondary_max * remaining),
				priority="high",
			)
		)
	community_max = vouches.community.max_count or 0
	if vouches.community.count < community_max:
		remaining = community_max - vouches.community.count
		suggestions.append(
			schemas.SuggestionSchema(
				category="vouches",
				action="join_community",
				title=f"Join {remaining} more active {_plural(remaining, 'community', 'communities')}",
				description="Community admins and moderators can vouch for active members",
				potential_points=round(vouches.community.max_score / community_max * remaining),
				priority="medium",
			)
		)

	if activity.events_attended.count < (activity.events_attended.target_count or 0):
		quick_wins.append(schemas.QuickWinSchema(title="Attend an event this week", points=2))
	hosted_gap = (activity.events_hosted.target_count or 0) - activity.events_hosted.count
	if hosted_gap > 0:
		suggestions.append(
			schemas.SuggestionSchema(
				category="activity",
				action="host_event",
				title=f"Host {hosted_gap} more {_plural(hosted_gap, 'event', 'events')}",
				description="Hosting events shows leadership and community engagement",
				potential_points=3,
				priority="medium",
			)
		)
	joined_gap = (activity.communities_joined.target_count or 0) - activity.communities_joined.count
	if joined_gap > 0:
		quick_wins.append(
			schemas.QuickWinSchema(
				title=f"Join {joined_gap} more {_plural(joined_gap, 'community', 'communities')}",
				points=2 * joined_gap,
			)
		)
	if activity.services_provided.count < (activity.services_provided.target_count or 0):
		suggestions.append(
			schemas.SuggestionSchema(
				category="activity",
				action="offer_service",
				title="Offer a service to the community",
				description="Share your skills and expertise with others",
				potential_points=1,
				priority="low",
			)
		)

	if moments.total_moments > 0 and moments.average_rating < RATING_SUGGESTION_BELOW:
		suggestions.append(
			schemas.SuggestionSchema(
				category="trustMoments",
				action="improve_rating",
				title="Focus on delivering great experiences",
				description="Higher ratings from connections boost your trust score",
				potential_points=5,
				priority="high",
			)
		)

	return schemas.SuggestionsSchema(
		current_score=detail.current_score,
		current_level=detail.trust_level,
		next_level=detail.next_level.next,
		points_to_next_level=detail.next_level.points_needed,
		suggestions=suggestions[:SUGGESTION_LIMIT],
		quick_wins=quick_wins[:QUICK_WIN_LIMIT],
	)


def history_entry_schema(entry: HistoryEntry) -> schemas.HistoryEntrySchema:
	return schemas.HistoryEntrySchema(
		id=entry.id,
		timestamp=entry.timestamp,
		score=entry.score,
		previous_score=entry.previous_score,
		change=entry.change,
		reason=entry.reason,
		component=entry.component,
		related_entity_type=entry.related_entity_type,
		related_entity_id=entry.related_entity_id,
	)


def summarize_history(entries: Sequence[schemas.HistoryEntrySchema], days: int) -> schemas.HistorySummarySchema:
	scores = [entry.score for entry in entries]
	start = entries[0].previous_score if entries[0].previous_score is not None else entries[0].score
	end = entries[-1].score
	return schemas.HistorySummarySchema(
		start_score=start,
		end_score=end,
		total_change=policy.round1(end - start),
		highest=max(scores),
		lowest=min(scores),
		average=policy.round1(sum(scores) / len(scores)),
		period_days=days,
	)


class TrustInsights:
	"""Explains scores to their owners; never mutates state."""

	def __init__(self, store: TrustStore, config: ConfigProvider, scores: ScoreEngine) -> None:
		self._store = store
		self._config = config
		self._scores = scores

	async def _user(self, user_id: str) -> User:
		user = await self._store.reader().get_user(user_id)
		if user is None:
			raise NotFoundError("user_not_found")
		return user

	async def get_trust_score_detail(self, user_id: str) -> schemas.TrustScoreDetailSchema:
		user = await self._user(user_id)
		repo = self._store.reader()
		cfg = self._config.current()
		breakdown = await self._scores.compute_breakdown(user_id, repo)
		stat = await repo.get_user_stat(user_id)
		moments = await repo.list_public_trust_moments(user_id)
		activity_counts = {
			"events_attended": stat.events_attended if stat else 0,
			"events_hosted": stat.events_hosted if stat else 0,
			"communities_joined": stat.communities_joined if stat else 0,
			"services_provided": stat.services_provided if stat else 0,
		}
		next_level = policy.get_next_level_info(user.trust_score, user.trust_level)
		return schemas.TrustScoreDetailSchema(
			user_id=user.id,
			current_score=user.trust_score,
			trust_level=user.trust_level,
			last_calculated_at=user.updated_at,
			breakdown=breakdown_schema(breakdown, activity_counts, moments, cfg),
			score_change=await self._score_change(user, cfg.history_days),
			next_level=schemas.NextLevelSchema(
				current=next_level.current,
				next=next_level.next,
				current_threshold=next_level.current_threshold,
				next_threshold=next_level.next_threshold,
				points_needed=next_level.points_needed,
				progress=next_level.progress,
			),
		)

	async def _score_change(self, user: User, days: int) -> Optional[schemas.ScoreChangeSchema]:
		since = utcnow() - timedelta(days=days)
		rows = await self._store.reader().list_history(user.id, since=since)
		if not rows:
			return None
		start = rows[0].previous_score
		return schemas.ScoreChangeSchema(period_days=days, change=policy.round1(user.trust_score - start), start_score=start)

	async def get_suggestions(self, user_id: str) -> schemas.SuggestionsSchema:
		return build_suggestions(await self.get_trust_score_detail(user_id))

	async def get_trust_score_history(self, user_id: str, days: int | None = None) -> schemas.TrustScoreHistorySchema:
		cfg = self._config.current()
		days = cfg.history_days if days is None else days
		if days < 1 or days > MAX_HISTORY_DAYS:
			raise ValidationError("invalid_days")
		user = await self._user(user_id)
		since = utcnow() - timedelta(days=days)
		rows = await self._store.reader().list_history(user_id, since=since)
		if rows:
			entries = [history_entry_schema(row) for row in rows]
		else:
			entries = [
				schemas.HistoryEntrySchema(
					timestamp=user.updated_at,
					score=user.trust_score,
					change=0.0,
					reason="Current score",
				)
			]
		return schemas.TrustScoreHistorySchema(user_id=user_id, history=entries, summary=summarize_history(entries, days))

	async def get_trust_dashboard(self, user_id: str, *, now: datetime | None = None) -> schemas.TrustDashboardSchema:
		user = await self._user(user_id)
		repo = self._store.reader()
		cfg = self._config.current()
		now = now or utcnow()

		total = await repo.count_listed_users()
		higher = await repo.count_listed_users_above(user.trust_score)
		percentile = (total - higher) / total * 100 if total else 0.0

		recent = await repo.list_history(
			user_id,
			since=now - timedelta(days=RECENT_CHANGES_DAYS),
			limit=RECENT_CHANGES_LIMIT,
			newest_first=True,
		)
		logs = await repo.list_accountability(user_id)
		total_impact = sum(log.impact_value for log in logs)

		last_active = user.last_active_at or user.created_at
		warning = decay_warning(last_active, now, cfg)
		return schemas.TrustDashboardSchema(
			user_id=user.id,
			trust_score=user.trust_score,
			trust_level=user.trust_level,
			rank=schemas.RankSchema(position=higher + 1, percentile=policy.round1(percentile), total_users=total),
			recent_changes=[history_entry_schema(row) for row in recent],
			suggestions=await self.get_suggestions(user_id),
			accountability_impact=schemas.AccountabilityImpactSchema(
				total_impact=round(total_impact, 4),
				affected_vouchees=len({log.vouchee_id for log in logs}),
			),
			decay_warning=schemas.DecayWarningSchema(days_until_decay=warning.days_until_decay, message=warning.message)
			if warning
			else None,
			last_activity=schemas.LastActivitySchema(date=last_active, days_ago=policy.inactive_days(last_active, now)),
		)

