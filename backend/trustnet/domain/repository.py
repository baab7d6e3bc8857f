"""Storage contracts for the trust engine plus the in-memory reference store."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import AsyncIterator, Callable, Iterable, Optional, Protocol, Sequence

from trustnet.domain.models import (
	AccountabilityImpact,
	AccountabilityLog,
	CommunityMembership,
	HistoryEntry,
	TrustLevel,
	TrustMoment,
	User,
	UserStat,
	Vouch,
	VouchStatus,
	VouchType,
	OPEN_STATUSES,
	utcnow,
)
from trustnet.domain.policy import calculate_trust_level


def slot_lock_key(vouchee_id: str, vouch_type: VouchType) -> str:
	return f"vouch-slot:{vouchee_id}:{vouch_type.value}"


def score_lock_key(user_id: str) -> str:
	return f"trust-score:{user_id}"


class TrustRepository(Protocol):
	"""Storage layer contract for vouches, scores and collaborator facts."""

	# Users and scores
	async def get_user(self, user_id: str) -> User | None:
		...

	async def update_user_score(self, user_id: str, score: float, level: TrustLevel, at: datetime) -> None:
		...

	async def list_ranked_users(self, user_ids: Optional[Sequence[str]] = None) -> list[User]:
		"""Listed users with a positive score, ordered by score desc then id asc."""
		...

	async def count_listed_users(self) -> int:
		...

	async def count_listed_users_above(self, score: float) -> int:
		...

	async def list_inactive_users(self, before: datetime) -> list[User]:
		...

	# Vouches
	async def get_vouch(self, vouch_id: str) -> Vouch | None:
		...

	async def insert_vouch(self, vouch: Vouch) -> None:
		...

	async def update_vouch(self, vouch: Vouch) -> None:
		...

	async def count_vouches(self, vouchee_id: str, vouch_type: VouchType, statuses: Iterable[VouchStatus]) -> int:
		...

	async def find_open_vouch(self, voucher_id: str, vouchee_id: str, vouch_type: VouchType) -> Vouch | None:
		...

	async def list_vouches(
		self,
		*,
		vouchee_id: Optional[str] = None,
		voucher_id: Optional[str] = None,
		statuses: Optional[Iterable[VouchStatus]] = None,
		vouch_type: Optional[VouchType] = None,
		limit: Optional[int] = None,
		offset: int = 0,
	) -> tuple[list[Vouch], int]:
		"""Newest first; returns the page and the unpaged total."""
		...

	# Collaborator projections (read-only except the vouch counters)
	async def get_user_stat(self, user_id: str) -> UserStat | None:
		...

	async def increment_vouch_counters(self, voucher_id: str, vouchee_id: str) -> None:
		...

	async def list_public_trust_moments(self, receiver_id: str) -> list[TrustMoment]:
		...

	async def are_connected(self, user_a: str, user_b: str) -> bool:
		...

	async def list_connection_ids(self, user_id: str) -> list[str]:
		...

	async def get_membership(self, community_id: str, user_id: str) -> CommunityMembership | None:
		...

	async def list_community_member_ids(self, community_id: str) -> list[str]:
		...

	# Audit trails
	async def append_history(self, entry: HistoryEntry) -> None:
		...

	async def list_history(
		self,
		user_id: str,
		*,
		since: Optional[datetime] = None,
		limit: Optional[int] = None,
		newest_first: bool = False,
	) -> list[HistoryEntry]:
		...

	async def insert_accountability(self, log: AccountabilityLog) -> None:
		...

	async def list_accountability(
		self,
		voucher_id: str,
		impact: Optional[AccountabilityImpact] = None,
	) -> list[AccountabilityLog]:
		...


class TrustStore(Protocol):
	"""Explicit store handle with an open/close lifecycle."""

	async def open(self) -> None:
		...

	async def close(self) -> None:
		...

	def transaction(self, *lock_keys: str):
		"""Async context manager yielding a repository; lock keys serialize writers."""
		...

	def reader(self) -> TrustRepository:
		...


class InMemoryTrustState:
	"""Plain containers shared by every in-memory repository handle."""

	def __init__(self) -> None:
		self.users: dict[str, User] = {}
		self.vouches: dict[str, Vouch] = {}
		self.stats: dict[str, UserStat] = {}
		self.moments: list[TrustMoment] = []
		self.connections: set[frozenset[str]] = set()
		self.memberships: dict[tuple[str, str], CommunityMembership] = {}
		self.history: list[HistoryEntry] = []
		self.accountability: list[AccountabilityLog] = []


class InMemoryTrustRepository(TrustRepository):
	"""Reference repository used in tests and developer environments.

	When bound to a transaction, writes are staged and applied on commit so a
	failed operation leaves no partial state behind.
	"""

	def __init__(self, state: InMemoryTrustState, staged: list[Callable[[], None]] | None = None) -> None:
		self._state = state
		self._staged = staged

	def _write(self, action: Callable[[], None]) -> None:
		if self._staged is None:
			action()
		else:
			self._staged.append(action)

	async def get_user(self, user_id: str) -> User | None:
		user = self._state.users.get(user_id)
		return replace(user) if user else None

	async def update_user_score(self, user_id: str, score: float, level: TrustLevel, at: datetime) -> None:
		def _apply() -> None:
			user = self._state.users[user_id]
			user.trust_score = score
			user.trust_level = level
			user.updated_at = at

		self._write(_apply)

	async def list_ranked_users(self, user_ids: Optional[Sequence[str]] = None) -> list[User]:
		pool: Iterable[User]
		if user_ids is None:
			pool = self._state.users.values()
		else:
			pool = [self._state.users[uid] for uid in dict.fromkeys(user_ids) if uid in self._state.users]
		ranked = [replace(user) for user in pool if user.is_listed and user.trust_score > 0]
		ranked.sort(key=lambda user: (-user.trust_score, user.id))
		return ranked

	async def count_listed_users(self) -> int:
		return sum(1 for user in self._state.users.values() if user.is_listed)

	async def count_listed_users_above(self, score: float) -> int:
		return sum(1 for user in self._state.users.values() if user.is_listed and user.trust_score > score)

	async def list_inactive_users(self, before: datetime) -> list[User]:
		return [
			replace(user)
			for user in self._state.users.values()
			if user.is_listed and (user.last_active_at or user.created_at) < before
		]

	async def get_vouch(self, vouch_id: str) -> Vouch | None:
		vouch = self._state.vouches.get(vouch_id)
		return replace(vouch) if vouch else None

	async def insert_vouch(self, vouch: Vouch) -> None:
		stored = replace(vouch)
		self._write(lambda: self._state.vouches.__setitem__(stored.id, stored))

	async def update_vouch(self, vouch: Vouch) -> None:
		stored = replace(vouch)
		self._write(lambda: self._state.vouches.__setitem__(stored.id, stored))

	async def count_vouches(self, vouchee_id: str, vouch_type: VouchType, statuses: Iterable[VouchStatus]) -> int:
		wanted = set(statuses)
		return sum(
			1
			for vouch in self._state.vouches.values()
			if vouch.vouchee_id == vouchee_id and vouch.vouch_type == vouch_type and vouch.status in wanted
		)

	async def find_open_vouch(self, voucher_id: str, vouchee_id: str, vouch_type: VouchType) -> Vouch | None:
		for vouch in self._state.vouches.values():
			if (
				vouch.voucher_id == voucher_id
				and vouch.vouchee_id == vouchee_id
				and vouch.vouch_type == vouch_type
				and vouch.status in OPEN_STATUSES
			):
				return replace(vouch)
		return None

	async def list_vouches(
		self,
		*,
		vouchee_id: Optional[str] = None,
		voucher_id: Optional[str] = None,
		statuses: Optional[Iterable[VouchStatus]] = None,
		vouch_type: Optional[VouchType] = None,
		limit: Optional[int] = None,
		offset: int = 0,
	) -> tuple[list[Vouch], int]:
		wanted = set(statuses) if statuses is not None else None
		matches = [
			replace(vouch)
			for vouch in self._state.vouches.values()
			if (vouchee_id is None or vouch.vouchee_id == vouchee_id)
			and (voucher_id is None or vouch.voucher_id == voucher_id)
			and (wanted is None or vouch.status in wanted)
			and (vouch_type is None or vouch.vouch_type == vouch_type)
		]
		matches.sort(key=lambda vouch: (vouch.created_at, vouch.id), reverse=True)
		total = len(matches)
		end = None if limit is None else offset + limit
		return matches[offset:end], total

	async def get_user_stat(self, user_id: str) -> UserStat | None:
		stat = self._state.stats.get(user_id)
		return replace(stat) if stat else None

	async def increment_vouch_counters(self, voucher_id: str, vouchee_id: str) -> None:
		def _apply() -> None:
			given = self._state.stats.setdefault(voucher_id, UserStat(user_id=voucher_id))
			given.vouches_given += 1
			received = self._state.stats.setdefault(vouchee_id, UserStat(user_id=vouchee_id))
			received.vouches_received += 1

		self._write(_apply)

	async def list_public_trust_moments(self, receiver_id: str) -> list[TrustMoment]:
		return [moment for moment in self._state.moments if moment.receiver_id == receiver_id and moment.is_public]

	async def are_connected(self, user_a: str, user_b: str) -> bool:
		return frozenset((user_a, user_b)) in self._state.connections

	async def list_connection_ids(self, user_id: str) -> list[str]:
		peers: list[str] = []
		for pair in self._state.connections:
			if user_id in pair:
				peers.extend(member for member in pair if member != user_id)
		return sorted(peers)

	async def get_membership(self, community_id: str, user_id: str) -> CommunityMembership | None:
		return self._state.memberships.get((community_id, user_id))

	async def list_community_member_ids(self, community_id: str) -> list[str]:
		return sorted(
			membership.user_id
			for (cid, _), membership in self._state.memberships.items()
			if cid == community_id and membership.is_approved
		)

	async def append_history(self, entry: HistoryEntry) -> None:
		stored = replace(entry)
		self._write(lambda: self._state.history.append(stored))

	async def list_history(
		self,
		user_id: str,
		*,
		since: Optional[datetime] = None,
		limit: Optional[int] = None,
		newest_first: bool = False,
	) -> list[HistoryEntry]:
		# Insertion order is the write order, which is the per-user chronological order
		rows = [
			entry
			for entry in self._state.history
			if entry.user_id == user_id and (since is None or entry.timestamp >= since)
		]
		if newest_first:
			rows.reverse()
		if limit is not None:
			rows = rows[:limit]
		return [replace(row) for row in rows]

	async def insert_accountability(self, log: AccountabilityLog) -> None:
		stored = replace(log)
		self._write(lambda: self._state.accountability.append(stored))

	async def list_accountability(
		self,
		voucher_id: str,
		impact: Optional[AccountabilityImpact] = None,
	) -> list[AccountabilityLog]:
		return [
			replace(log)
			for log in self._state.accountability
			if log.voucher_id == voucher_id and (impact is None or log.impact_type == impact)
		]


class InMemoryTrustStore(TrustStore):
	"""In-process store: per-key asyncio locks stand in for row locks."""

	def __init__(self, state: InMemoryTrustState | None = None) -> None:
		self.state = state or InMemoryTrustState()
		self._locks: dict[str, asyncio.Lock] = {}
		self._opened = False

	async def open(self) -> None:
		self._opened = True

	async def close(self) -> None:
		self._opened = False

	def _lock(self, key: str) -> asyncio.Lock:
		if key not in self._locks:
			self._locks[key] = asyncio.Lock()
		return self._locks[key]

	@asynccontextmanager
	async def transaction(self, *lock_keys: str) -> AsyncIterator[TrustRepository]:
		held: list[asyncio.Lock] = []
		try:
			for key in sorted(set(lock_keys)):
				lock = self._lock(key)
				await lock.acquire()
				held.append(lock)
			staged: list[Callable[[], None]] = []
			yield InMemoryTrustRepository(self.state, staged)
			for action in staged:
				action()
		finally:
			for lock in reversed(held):
				lock.release()

	def reader(self) -> TrustRepository:
		return InMemoryTrustRepository(self.state)

	# --- Seeding helpers for tests and local development ---
	def add_user(
		self,
		user_id: str,
		*,
		username: str | None = None,
		trust_score: float = 0.0,
		created_at: datetime | None = None,
		last_active_at: datetime | None = None,
		**extra,
	) -> User:
		user = User(
			id=user_id,
			username=username,
			trust_score=trust_score,
			trust_level=calculate_trust_level(trust_score),
			created_at=created_at or utcnow(),
			last_active_at=last_active_at,
			**extra,
		)
		self.state.users[user_id] = user
		return user

	def set_stat(self, user_id: str, **counters: int) -> UserStat:
		stat = UserStat(user_id=user_id, **counters)
		self.state.stats[user_id] = stat
		return stat

	def add_trust_moment(self, moment: TrustMoment) -> None:
		self.state.moments.append(moment)

	def connect(self, user_a: str, user_b: str) -> None:
		self.state.connections.add(frozenset((user_a, user_b)))

	def add_membership(self, membership: CommunityMembership) -> None:
		self.state.memberships[(membership.community_id, membership.user_id)] = membership

	def add_vouch(self, vouch: Vouch) -> Vouch:
		self.state.vouches[vouch.id] = vouch
		return vouch

	def add_accountability(self, log: AccountabilityLog) -> None:
		self.state.accountability.append(log)
