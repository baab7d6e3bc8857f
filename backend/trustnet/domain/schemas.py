"""Pydantic response schemas for the trust engine operations."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from trustnet.domain.models import (
	BadgeTier,
	LeaderboardScope,
	ScoreComponent,
	TrustLevel,
	VouchStatus,
	VouchType,
)


class VouchSchema(BaseModel):
	id: str
	voucher_id: str
	vouchee_id: str
	vouch_type: VouchType
	status: VouchStatus
	weight_percentage: float
	community_id: Optional[str] = None
	message: Optional[str] = None
	is_community_vouch: bool = False
	created_at: datetime
	approved_at: Optional[datetime] = None
	revoked_at: Optional[datetime] = None
	revoke_reason: Optional[str] = None


class ScoreUpdateSchema(BaseModel):
	previous_score: float
	trust_score: float
	trust_level: TrustLevel
	changed: bool


class VouchResultSchema(BaseModel):
	vouch: VouchSchema
	score: Optional[ScoreUpdateSchema] = None


class VouchListSchema(BaseModel):
	items: list[VouchSchema]
	total: int
	limit: int
	offset: int


class VouchLimitSchema(BaseModel):
	max: int
	current: int
	available: int = Field(..., ge=0)


class VouchLimitsSchema(BaseModel):
	limits: Dict[VouchType, VouchLimitSchema]
	can_receive_more: bool


class VouchSummarySchema(BaseModel):
	received: Dict[VouchType, int]
	total_received: int
	pending_received: int
	total_given: int
	active_given: int
	available_slots: Dict[VouchType, int]
	can_receive_more: bool


class SubScoreSchema(BaseModel):
	score: float
	max_score: float
	count: int
	max_count: Optional[int] = None
	target_count: Optional[int] = None


class VouchesBreakdownSchema(BaseModel):
	score: float
	max_score: float = 40
	percentage: int
	primary: SubScoreSchema
	secondary: SubScoreSchema
	community: SubScoreSchema


class ActivityBreakdownSchema(BaseModel):
	score: float
	max_score: float = 30
	percentage: int
	events_attended: SubScoreSchema
	events_hosted: SubScoreSchema
	communities_joined: SubScoreSchema
	services_provided: SubScoreSchema


class TagCountSchema(BaseModel):
	tag: str
	count: int


class TrustMomentStatsSchema(BaseModel):
	total_moments: int = 0
	average_rating: float = 0.0
	rating_score: float = 0.0
	quantity_bonus: float = 0.0
	distribution: Dict[str, int] = Field(default_factory=dict)
	sentiment: Dict[str, float] = Field(default_factory=dict)
	by_moment_type: Dict[str, int] = Field(default_factory=dict)
	top_tags: list[TagCountSchema] = Field(default_factory=list)


class TrustMomentsBreakdownSchema(BaseModel):
	score: float
	max_score: float = 30
	percentage: int
	statistics: TrustMomentStatsSchema


class BreakdownSchema(BaseModel):
	vouches: VouchesBreakdownSchema
	activity: ActivityBreakdownSchema
	trust_moments: TrustMomentsBreakdownSchema


class NextLevelSchema(BaseModel):
	current: TrustLevel
	next: Optional[TrustLevel] = None
	current_threshold: float
	next_threshold: Optional[float] = None
	points_needed: float = Field(..., ge=0)
	progress: int = Field(..., ge=0, le=100)


class ScoreChangeSchema(BaseModel):
	period_days: int
	change: float
	start_score: float


class TrustScoreDetailSchema(BaseModel):
	user_id: str
	current_score: float
	trust_level: TrustLevel
	last_calculated_at: datetime
	breakdown: BreakdownSchema
	score_change: Optional[ScoreChangeSchema] = None
	next_level: NextLevelSchema


class SuggestionSchema(BaseModel):
	category: str
	action: str
	title: str
	description: str
	potential_points: int
	priority: str


class QuickWinSchema(BaseModel):
	title: str
	points: int
	effort: str = "low"


class SuggestionsSchema(BaseModel):
	current_score: float
	current_level: TrustLevel
	next_level: Optional[TrustLevel] = None
	points_to_next_level: float
	suggestions: list[SuggestionSchema] = Field(default_factory=list)
	quick_wins: list[QuickWinSchema] = Field(default_factory=list)


class HistoryEntrySchema(BaseModel):
	id: Optional[str] = None
	timestamp: datetime
	score: float
	previous_score: Optional[float] = None
	change: float
	reason: Optional[str] = None
	component: Optional[ScoreComponent] = None
	related_entity_type: Optional[str] = None
	related_entity_id: Optional[str] = None


class HistorySummarySchema(BaseModel):
	start_score: float
	end_score: float
	total_change: float
	highest: float
	lowest: float
	average: float
	period_days: int


class TrustScoreHistorySchema(BaseModel):
	user_id: str
	history: list[HistoryEntrySchema]
	summary: HistorySummarySchema


class RankSchema(BaseModel):
	position: int = Field(..., ge=1)
	percentile: float
	total_users: int


class AccountabilityImpactSchema(BaseModel):
	total_impact: float = 0.0
	affected_vouchees: int = 0


class DecayWarningSchema(BaseModel):
	days_until_decay: int
	message: str


class LastActivitySchema(BaseModel):
	date: Optional[datetime] = None
	days_ago: int = 0


class TrustDashboardSchema(BaseModel):
	user_id: str
	trust_score: float
	trust_level: TrustLevel
	rank: RankSchema
	recent_changes: list[HistoryEntrySchema] = Field(default_factory=list)
	suggestions: SuggestionsSchema
	accountability_impact: AccountabilityImpactSchema
	decay_warning: Optional[DecayWarningSchema] = None
	last_activity: LastActivitySchema


class LeaderboardEntrySchema(BaseModel):
	rank: int = Field(..., ge=1)
	user_id: str
	display_name: str
	trust_score: float
	trust_level: TrustLevel
	percentile: float
	is_me: bool = False


class LeaderboardSchema(BaseModel):
	scope: LeaderboardScope
	community_id: Optional[str] = None
	total: int
	entries: list[LeaderboardEntrySchema]
	user_rank: Optional[LeaderboardEntrySchema] = None


class NextTierSchema(BaseModel):
	tier: BadgeTier
	threshold: int
	remaining: int = Field(..., ge=0)


class BadgeSchema(BaseModel):
	type: str
	name: str
	description: str = ""
	tier: Optional[BadgeTier] = None
	count: int
	progress: int = Field(..., ge=0, le=100)
	earned_at: Optional[datetime] = None
	next_tier: Optional[NextTierSchema] = None


class BadgesSchema(BaseModel):
	user_id: str
	config_version: int
	earned: list[BadgeSchema] = Field(default_factory=list)
	in_progress: list[BadgeSchema] = Field(default_factory=list)
