"""Pure scoring rules for the trust score and its levels."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from trustnet.domain.config import VouchWeights
from trustnet.domain.models import TrustLevel, TrustMoment, UserStat, Vouch, VouchType


# --- Component caps ---
VOUCHES_MAX = 40.0
ACTIVITY_MAX = 30.0
TRUST_MOMENTS_MAX = 30.0
SCORE_MIN = 0.0
SCORE_MAX = 100.0

# Each vouch weight is a percentage share of the 40-point component
VOUCH_COMPONENT_FACTOR = VOUCHES_MAX / 100.0
SECONDARY_SATURATION = 3
COMMUNITY_SATURATION = 2

# Activity: (points per unit, cap, target count)
EVENTS_ATTENDED_RULE = (2.0, 10.0, 5)
EVENTS_HOSTED_RULE = (3.0, 9.0, 3)
COMMUNITIES_JOINED_RULE = (2.0, 6.0, 3)
SERVICES_PROVIDED_RULE = (1.0, 5.0, 5)

RATING_MAX = 5
QUANTITY_BONUS_PER_MOMENT = 0.3
QUANTITY_BONUS_MAX = 3.0

# Lower bound of each level; starter 0-30, trusted 31-60, leader 61-100
LEVEL_THRESHOLDS: tuple[tuple[TrustLevel, float], ...] = (
	(TrustLevel.STARTER, 0.0),
	(TrustLevel.TRUSTED, 31.0),
	(TrustLevel.LEADER, 61.0),
)


@dataclass(slots=True)
class VouchesScore:
	primary: float
	secondary: float
	community: float
	primary_count: int
	secondary_count: int
	community_count: int

	@property
	def total(self) -> float:
		return min(self.primary + self.secondary + self.community, VOUCHES_MAX)


@dataclass(slots=True)
class ActivityScore:
	events_attended: float
	events_hosted: float
	communities_joined: float
	services_provided: float

	@property
	def total(self) -> float:
		return min(
			self.events_attended + self.events_hosted + self.communities_joined + self.services_provided,
			ACTIVITY_MAX,
		)


@dataclass(slots=True)
class TrustMomentsScore:
	count: int
	average_rating: float
	rating_score: float
	quantity_bonus: float

	@property
	def total(self) -> float:
		if self.count == 0:
			return 0.0
		return min(self.rating_score + self.quantity_bonus, TRUST_MOMENTS_MAX)


@dataclass(slots=True)
class ScoreBreakdown:
	vouches: VouchesScore
	activity: ActivityScore
	trust_moments: TrustMomentsScore

	@property
	def total(self) -> float:
		return clamp_score(self.vouches.total + self.activity.total + self.trust_moments.total)

	@property
	def level(self) -> TrustLevel:
		return calculate_trust_level(self.total)


def clamp_score(value: float) -> float:
	return max(SCORE_MIN, min(SCORE_MAX, round(value, 4)))


def vouches_component(vouches: Iterable[Vouch], weights: VouchWeights) -> VouchesScore:
	"""Score the vouchee's counted vouches; callers pass every vouch they hold."""
	counted = [vouch for vouch in vouches if vouch.counts_toward_score]
	primary_count = sum(1 for vouch in counted if vouch.vouch_type == VouchType.PRIMARY)
	secondary_count = sum(1 for vouch in counted if vouch.vouch_type == VouchType.SECONDARY)
	community_count = sum(1 for vouch in counted if vouch.vouch_type == VouchType.COMMUNITY)

	primary = weights.primary * VOUCH_COMPONENT_FACTOR if primary_count > 0 else 0.0
	secondary = (
		weights.secondary * VOUCH_COMPONENT_FACTOR * min(secondary_count, SECONDARY_SATURATION) / SECONDARY_SATURATION
	)
	community = (
		weights.community * VOUCH_COMPONENT_FACTOR * min(community_count, COMMUNITY_SATURATION) / COMMUNITY_SATURATION
	)
	return VouchesScore(
		primary=primary,
		secondary=secondary,
		community=community,
		primary_count=primary_count,
		secondary_count=secondary_count,
		community_count=community_count,
	)


def _capped(count: int, rule: tuple[float, float, int]) -> float:
	per_unit, cap, _target = rule
	return min(max(count, 0) * per_unit, cap)


def activity_component(stat: Optional[UserStat]) -> ActivityScore:
	if stat is None:
		return ActivityScore(0.0, 0.0, 0.0, 0.0)
	return ActivityScore(
		events_attended=_capped(stat.events_attended, EVENTS_ATTENDED_RULE),
		events_hosted=_capped(stat.events_hosted, EVENTS_HOSTED_RULE),
		communities_joined=_capped(stat.communities_joined, COMMUNITIES_JOINED_RULE),
		services_provided=_capped(stat.services_provided, SERVICES_PROVIDED_RULE),
	)


def trust_moments_component(moments: Sequence[TrustMoment]) -> TrustMomentsScore:
	public = [moment for moment in moments if moment.is_public]
	if not public:
		return TrustMomentsScore(count=0, average_rating=0.0, rating_score=0.0, quantity_bonus=0.0)
	average = sum(moment.rating for moment in public) / len(public)
	return TrustMomentsScore(
		count=len(public),
		average_rating=average,
		rating_score=(average / RATING_MAX) * TRUST_MOMENTS_MAX,
		quantity_bonus=min(len(public) * QUANTITY_BONUS_PER_MOMENT, QUANTITY_BONUS_MAX),
	)


def compute_breakdown(
	vouches: Iterable[Vouch],
	stat: Optional[UserStat],
	moments: Sequence[TrustMoment],
	weights: VouchWeights,
) -> ScoreBreakdown:
	return ScoreBreakdown(
		vouches=vouches_component(vouches, weights),
		activity=activity_component(stat),
		trust_moments=trust_moments_component(moments),
	)


def calculate_trust_level(score: float) -> TrustLevel:
	"""Map a score to its level. Fractional scores below a boundary stay in the lower level."""
	level = TrustLevel.STARTER
	for candidate, lower_bound in LEVEL_THRESHOLDS:
		if score >= lower_bound:
			level = candidate
	return level


@dataclass(slots=True)
class NextLevelInfo:
	current: TrustLevel
	next: Optional[TrustLevel]
	current_threshold: float
	next_threshold: Optional[float]
	points_needed: float
	progress: int


def get_next_level_info(score: float, level: TrustLevel | None = None) -> NextLevelInfo:
	current = level or calculate_trust_level(score)
	levels = [name for name, _ in LEVEL_THRESHOLDS]
	index = levels.index(current)
	current_threshold = LEVEL_THRESHOLDS[index][1]
	if index + 1 >= len(LEVEL_THRESHOLDS):
		return NextLevelInfo(
			current=current,
			next=None,
			current_threshold=current_threshold,
			next_threshold=None,
			points_needed=0.0,
			progress=100,
		)
	next_level, next_threshold = LEVEL_THRESHOLDS[index + 1]
	span = next_threshold - current_threshold
	progress = round((score - current_threshold) / span * 100) if span > 0 else 100
	return NextLevelInfo(
		current=current,
		next=next_level,
		current_threshold=current_threshold,
		next_threshold=next_threshold,
		points_needed=round(max(0.0, next_threshold - score), 1),
		progress=max(0, min(100, progress)),
	)


def attendance_reliability(stat: Optional[UserStat]) -> float:
	if stat is None:
		return 0.0
	denominator = stat.events_attended + stat.no_shows
	if denominator <= 0:
		return 0.0
	return stat.events_attended / denominator


def inactive_days(last_active: Optional[datetime], now: datetime) -> int:
	if last_active is None:
		return 0
	return max(0, (now - last_active).days)


def round1(value: float) -> float:
	return round(value * 10) / 10
