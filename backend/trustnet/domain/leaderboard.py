"""Leaderboard service: ranked, percentile-annotated trust score views."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from trustnet.domain import policy
from trustnet.domain.exceptions import ValidationError
from trustnet.domain.models import LeaderboardScope, TrustLevel, User
from trustnet.domain.repository import TrustStore
from trustnet.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

MAX_LIMIT = 500


@dataclass(slots=True)
class LeaderboardEntry:
	user_id: str
	display_name: str
	trust_score: float
	trust_level: TrustLevel
	rank: int
	percentile: float
	is_me: bool = False


@dataclass(slots=True)
class Leaderboard:
	scope: LeaderboardScope
	community_id: Optional[str]
	total: int
	entries: list[LeaderboardEntry]
	user_rank: Optional[LeaderboardEntry] = None


def display_name(user: User) -> str:
	return user.username or f"User{user.id[-4:]}"


def rank_users(users: list[User], requester_id: Optional[str], limit: int) -> tuple[list[LeaderboardEntry], Optional[LeaderboardEntry]]:
	"""Rank a population already ordered by score desc, id asc.

	Rank is one plus the number of strictly higher scores, so ties share a rank.
	"""
	total = len(users)
	entries: list[LeaderboardEntry] = []
	requester_entry: Optional[LeaderboardEntry] = None
	higher = 0
	previous_score: Optional[float] = None
	for index, user in enumerate(users):
		if previous_score is None or user.trust_score < previous_score:
			higher = index
			previous_score = user.trust_score
		entry = LeaderboardEntry(
			user_id=user.id,
			display_name=display_name(user),
			trust_score=policy.round1(user.trust_score),
			trust_level=user.trust_level,
			rank=higher + 1,
			percentile=policy.round1((total - higher) / total * 100) if total else 0.0,
			is_me=user.id == requester_id,
		)
		if index < limit:
			entries.append(entry)
		elif entry.is_me:
			requester_entry = entry
			break
		elif requester_id is None:
			break
	return entries, requester_entry


def rank_outsider(user: User, users: list[User]) -> LeaderboardEntry:
	"""Place a requester who is not in the ranked population, e.g. a zero score or a non-member."""
	higher = sum(1 for other in users if other.trust_score > user.trust_score)
	total = len(users) + 1
	return LeaderboardEntry(
		user_id=user.id,
		display_name=display_name(user),
		trust_score=policy.round1(user.trust_score),
		trust_level=user.trust_level,
		rank=higher + 1,
		percentile=policy.round1((total - higher) / total * 100),
		is_me=True,
	)


class LeaderboardService:
	def __init__(self, store: TrustStore) -> None:
		self._store = store

	async def build(
		self,
		requester_id: Optional[str] = None,
		scope: LeaderboardScope | str = LeaderboardScope.GLOBAL,
		community_id: Optional[str] = None,
		limit: int = 100,
	) -> Leaderboard:
		try:
			scope = LeaderboardScope(scope)
		except ValueError as exc:
			raise ValidationError("invalid_scope") from exc
		if limit < 1 or limit > MAX_LIMIT:
			raise ValidationError("invalid_limit")
		if scope == LeaderboardScope.COMMUNITY and not community_id:
			raise ValidationError("community_id_required")
		if scope == LeaderboardScope.FRIENDS and not requester_id:
			raise ValidationError("requester_required")

		started = time.perf_counter()
		repo = self._store.reader()
		population: Optional[list[str]] = None
		if scope == LeaderboardScope.COMMUNITY:
			assert community_id is not None
			population = await repo.list_community_member_ids(community_id)
		elif scope == LeaderboardScope.FRIENDS:
			assert requester_id is not None
			population = [requester_id, *await repo.list_connection_ids(requester_id)]
		users = await repo.list_ranked_users(population)
		entries, user_rank = rank_users(users, requester_id, limit)
		if requester_id and user_rank is None and not any(entry.is_me for entry in entries):
			requester = await repo.get_user(requester_id)
			if requester is not None and requester.is_listed:
				user_rank = rank_outsider(requester, users)
		obs_metrics.observe_leaderboard_build(scope.value, time.perf_counter() - started)
		return Leaderboard(
			scope=scope,
			community_id=community_id if scope == LeaderboardScope.COMMUNITY else None,
			total=len(users),
			entries=entries,
			user_rank=user_rank,
		)
