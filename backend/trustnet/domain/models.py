"""Domain records for vouches, trust scores and their audit trail."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def new_id() -> str:
	return str(uuid4())


class VouchType(str, Enum):
	PRIMARY = "PRIMARY"
	SECONDARY = "SECONDARY"
	COMMUNITY = "COMMUNITY"


class VouchStatus(str, Enum):
	PENDING = "PENDING"
	APPROVED = "APPROVED"
	ACTIVE = "ACTIVE"
	DECLINED = "DECLINED"
	REVOKED = "REVOKED"


# Statuses that occupy a slot and contribute to the vouchee's score
COUNTED_STATUSES = frozenset({VouchStatus.APPROVED, VouchStatus.ACTIVE})
# Statuses that block a second request of the same type between the same pair
OPEN_STATUSES = frozenset({VouchStatus.PENDING, VouchStatus.APPROVED, VouchStatus.ACTIVE})


class VouchAction(str, Enum):
	APPROVE = "approve"
	DECLINE = "decline"
	DOWNGRADE = "downgrade"


class TrustLevel(str, Enum):
	STARTER = "starter"
	TRUSTED = "trusted"
	LEADER = "leader"


class ScoreComponent(str, Enum):
	VOUCHES = "vouches"
	ACTIVITY = "activity"
	TRUST_MOMENTS = "trustMoments"


class UserStatus(str, Enum):
	ACTIVE = "active"
	SUSPENDED = "suspended"
	DELETED = "deleted"


class CommunityRole(str, Enum):
	OWNER = "OWNER"
	ADMIN = "ADMIN"
	MODERATOR = "MODERATOR"
	MEMBER = "MEMBER"


COMMUNITY_VOUCHER_ROLES = frozenset({CommunityRole.OWNER, CommunityRole.ADMIN, CommunityRole.MODERATOR})


class AccountabilityImpact(str, Enum):
	POSITIVE = "POSITIVE"
	NEGATIVE = "NEGATIVE"


class BadgeTier(str, Enum):
	BRONZE = "bronze"
	SILVER = "silver"
	GOLD = "gold"
	PLATINUM = "platinum"


TIER_ORDER: tuple[BadgeTier, ...] = (BadgeTier.BRONZE, BadgeTier.SILVER, BadgeTier.GOLD, BadgeTier.PLATINUM)


class LeaderboardScope(str, Enum):
	GLOBAL = "global"
	COMMUNITY = "community"
	FRIENDS = "friends"


@dataclass(slots=True)
class User:
	id: str
	trust_score: float = 0.0
	trust_level: TrustLevel = TrustLevel.STARTER
	username: Optional[str] = None
	full_name: Optional[str] = None
	status: UserStatus = UserStatus.ACTIVE
	created_at: datetime = field(default_factory=utcnow)
	updated_at: datetime = field(default_factory=utcnow)
	last_active_at: Optional[datetime] = None
	deleted_at: Optional[datetime] = None

	@property
	def is_listed(self) -> bool:
		return self.status == UserStatus.ACTIVE and self.deleted_at is None


@dataclass(slots=True)
class Vouch:
	voucher_id: str
	vouchee_id: str
	vouch_type: VouchType
	status: VouchStatus
	weight_percentage: float
	id: str = field(default_factory=new_id)
	community_id: Optional[str] = None
	message: Optional[str] = None
	is_community_vouch: bool = False
	created_at: datetime = field(default_factory=utcnow)
	approved_at: Optional[datetime] = None
	revoked_at: Optional[datetime] = None
	revoke_reason: Optional[str] = None

	@property
	def counts_toward_score(self) -> bool:
		return self.status in COUNTED_STATUSES


@dataclass(slots=True)
class TrustMoment:
	giver_id: str
	receiver_id: str
	rating: int
	id: str = field(default_factory=new_id)
	moment_type: Optional[str] = None
	tags: frozenset[str] = frozenset()
	is_public: bool = True
	created_at: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class UserStat:
	"""Activity counters owned by collaborating modules."""

	user_id: str
	events_attended: int = 0
	events_hosted: int = 0
	communities_joined: int = 0
	services_provided: int = 0
	vouches_given: int = 0
	vouches_received: int = 0
	connections_accepted: int = 0
	no_shows: int = 0


@dataclass(slots=True)
class CommunityMembership:
	community_id: str
	user_id: str
	role: CommunityRole = CommunityRole.MEMBER
	is_approved: bool = True


@dataclass(slots=True)
class HistoryEntry:
	user_id: str
	score: float
	previous_score: float
	reason: str
	component: Optional[ScoreComponent] = None
	related_entity_type: Optional[str] = None
	related_entity_id: Optional[str] = None
	id: str = field(default_factory=new_id)
	timestamp: datetime = field(default_factory=utcnow)

	@property
	def change(self) -> float:
		return round(self.score - self.previous_score, 4)


@dataclass(slots=True)
class AccountabilityLog:
	voucher_id: str
	vouchee_id: str
	impact_type: AccountabilityImpact
	impact_value: float
	id: str = field(default_factory=new_id)
	vouch_id: Optional[str] = None
	reason: Optional[str] = None
	related_entity_type: Optional[str] = None
	related_entity_id: Optional[str] = None
	is_processed: bool = False
	created_at: datetime = field(default_factory=utcnow)
