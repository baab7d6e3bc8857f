"""PostgreSQL-backed trust repository and store."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Optional, Sequence

import asyncpg

from trustnet.domain.models import (
	OPEN_STATUSES,
	AccountabilityImpact,
	AccountabilityLog,
	CommunityMembership,
	CommunityRole,
	HistoryEntry,
	ScoreComponent,
	TrustLevel,
	TrustMoment,
	User,
	UserStat,
	UserStatus,
	Vouch,
	VouchStatus,
	VouchType,
)
from trustnet.domain.repository import TrustRepository, TrustStore
from trustnet.infra.postgres import advisory_lock, close_pool, open_pool
from trustnet.settings import Settings

_USER_COLUMNS = (
	"id, username, full_name, trust_score, trust_level, status, created_at, updated_at, last_active_at, deleted_at"
)
_VOUCH_COLUMNS = (
	"id, voucher_id, vouchee_id, vouch_type, status, weight_percentage, community_id, message, "
	"is_community_vouch, created_at, approved_at, revoked_at, revoke_reason"
)
_HISTORY_COLUMNS = (
	"id, user_id, score, previous_score, reason, component, related_entity_type, related_entity_id, timestamp"
)
_ACCOUNTABILITY_COLUMNS = (
	"id, voucher_id, vouchee_id, vouch_id, impact_type, impact_value, reason, "
	"related_entity_type, related_entity_id, is_processed, created_at"
)


def _row_to_user(row: asyncpg.Record) -> User:
	return User(
		id=str(row["id"]),
		username=row["username"],
		full_name=row["full_name"],
		trust_score=float(row["trust_score"]),
		trust_level=TrustLevel(str(row["trust_level"])),
		status=UserStatus(str(row["status"])),
		created_at=row["created_at"],
		updated_at=row["updated_at"],
		last_active_at=row["last_active_at"],
		deleted_at=row["deleted_at"],
	)


def _row_to_vouch(row: asyncpg.Record) -> Vouch:
	return Vouch(
		id=str(row["id"]),
		voucher_id=str(row["voucher_id"]),
		vouchee_id=str(row["vouchee_id"]),
		vouch_type=VouchType(str(row["vouch_type"])),
		status=VouchStatus(str(row["status"])),
		weight_percentage=float(row["weight_percentage"]),
		community_id=str(row["community_id"]) if row["community_id"] is not None else None,
		message=row["message"],
		is_community_vouch=bool(row["is_community_vouch"]),
		created_at=row["created_at"],
		approved_at=row["approved_at"],
		revoked_at=row["revoked_at"],
		revoke_reason=row["revoke_reason"],
	)


def _row_to_history(row: asyncpg.Record) -> HistoryEntry:
	return HistoryEntry(
		id=str(row["id"]),
		user_id=str(row["user_id"]),
		score=float(row["score"]),
		previous_score=float(row["previous_score"]),
		reason=row["reason"],
		component=ScoreComponent(row["component"]) if row["component"] else None,
		related_entity_type=row["related_entity_type"],
		related_entity_id=row["related_entity_id"],
		timestamp=row["timestamp"],
	)


def _row_to_accountability(row: asyncpg.Record) -> AccountabilityLog:
	return AccountabilityLog(
		id=str(row["id"]),
		voucher_id=str(row["voucher_id"]),
		vouchee_id=str(row["vouchee_id"]),
		vouch_id=str(row["vouch_id"]) if row["vouch_id"] is not None else None,
		impact_type=AccountabilityImpact(str(row["impact_type"])),
		impact_value=float(row["impact_value"]),
		reason=row["reason"],
		related_entity_type=row["related_entity_type"],
		related_entity_id=row["related_entity_id"],
		is_processed=bool(row["is_processed"]),
		created_at=row["created_at"],
	)


def _vouch_filters(
	*,
	vouchee_id: Optional[str],
	voucher_id: Optional[str],
	statuses: Optional[Iterable[VouchStatus]],
	vouch_type: Optional[VouchType],
) -> tuple[str, list[Any]]:
	clauses: list[str] = []
	args: list[Any] = []
	if vouchee_id is not None:
		args.append(vouchee_id)
		clauses.append(f"vouchee_id = ${len(args)}")
	if voucher_id is not None:
		args.append(voucher_id)
		clauses.append(f"voucher_id = ${len(args)}")
	if statuses is not None:
		args.append([status.value for status in statuses])
		clauses.append(f"status = ANY(${len(args)}::text[])")
	if vouch_type is not None:
		args.append(vouch_type.value)
		clauses.append(f"vouch_type = ${len(args)}")
	where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
	return where, args


class PostgresTrustRepository(TrustRepository):
	"""Runs queries on a pool (autocommit reads) or on a connection inside a transaction."""

	def __init__(self, executor: asyncpg.Pool | asyncpg.Connection) -> None:
		self._db = executor

	async def get_user(self, user_id: str) -> User | None:
		row = await self._db.fetchrow(f"SELECT {_USER_COLUMNS} FROM trust_users WHERE id = $1", user_id)
		return _row_to_user(row) if row else None

	async def update_user_score(self, user_id: str, score: float, level: TrustLevel, at: datetime) -> None:
		await self._db.execute(
			"UPDATE trust_users SET trust_score = $2, trust_level = $3, updated_at = $4 WHERE id = $1",
			user_id,
			score,
			level.value,
			at,
		)

	async def list_ranked_users(self, user_ids: Optional[Sequence[str]] = None) -> list[User]:
		query = f"""
			SELECT {_USER_COLUMNS}
			FROM trust_users
			WHERE status = 'active' AND deleted_at IS NULL AND trust_score > 0
			{{population}}
			ORDER BY trust_score DESC, id ASC
		"""
		if user_ids is None:
			rows = await self._db.fetch(query.format(population=""))
		else:
			rows = await self._db.fetch(query.format(population="AND id = ANY($1::text[])"), list(user_ids))
		return [_row_to_user(row) for row in rows]

	async def count_listed_users(self) -> int:
		value = await self._db.fetchval(
			"SELECT COUNT(*) FROM trust_users WHERE status = 'active' AND deleted_at IS NULL"
		)
		return int(value or 0)

	async def count_listed_users_above(self, score: float) -> int:
		value = await self._db.fetchval(
			"SELECT COUNT(*) FROM trust_users WHERE status = 'active' AND deleted_at IS NULL AND trust_score > $1",
			score,
		)
		return int(value or 0)

	async def list_inactive_users(self, before: datetime) -> list[User]:
		rows = await self._db.fetch(
			f"""
			SELECT {_USER_COLUMNS} FROM trust_users
			WHERE status = 'active' AND deleted_at IS NULL AND COALESCE(last_active_at, created_at) < $1
			ORDER BY id
			""",
			before,
		)
		return [_row_to_user(row) for row in rows]

	async def get_vouch(self, vouch_id: str) -> Vouch | None:
		row = await self._db.fetchrow(f"SELECT {_VOUCH_COLUMNS} FROM trust_vouches WHERE id = $1", vouch_id)
		return _row_to_vouch(row) if row else None

	async def insert_vouch(self, vouch: Vouch) -> None:
		await self._db.execute(
			f"""
			INSERT INTO trust_vouches ({_VOUCH_COLUMNS})
			VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
			""",
			vouch.id,
			vouch.voucher_id,
			vouch.vouchee_id,
			vouch.vouch_type.value,
			vouch.status.value,
			vouch.weight_percentage,
			vouch.community_id,
			vouch.message,
			vouch.is_community_vouch,
			vouch.created_at,
			vouch.approved_at,
			vouch.revoked_at,
			vouch.revoke_reason,
		)

	async def update_vouch(self, vouch: Vouch) -> None:
		await self._db.execute(
			"""
			UPDATE trust_vouches
			SET vouch_type = $2, status = $3, weight_percentage = $4,
				approved_at = $5, revoked_at = $6, revoke_reason = $7
			WHERE id = $1
			""",
			vouch.id,
			vouch.vouch_type.value,
			vouch.status.value,
			vouch.weight_percentage,
			vouch.approved_at,
			vouch.revoked_at,
			vouch.revoke_reason,
		)

	async def count_vouches(self, vouchee_id: str, vouch_type: VouchType, statuses: Iterable[VouchStatus]) -> int:
		value = await self._db.fetchval(
			"""
			SELECT COUNT(*) FROM trust_vouches
			WHERE vouchee_id = $1 AND vouch_type = $2 AND status = ANY($3::text[])
			""",
			vouchee_id,
			vouch_type.value,
			[status.value for status in statuses],
		)
		return int(value or 0)

	async def find_open_vouch(self, voucher_id: str, vouchee_id: str, vouch_type: VouchType) -> Vouch | None:
		row = await self._db.fetchrow(
			f"""
			SELECT {_VOUCH_COLUMNS} FROM trust_vouches
			WHERE voucher_id = $1 AND vouchee_id = $2 AND vouch_type = $3 AND status = ANY($4::text[])
			LIMIT 1
			""",
			voucher_id,
			vouchee_id,
			vouch_type.value,
			[status.value for status in OPEN_STATUSES],
		)
		return _row_to_vouch(row) if row else None

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
		where, args = _vouch_filters(
			vouchee_id=vouchee_id,
			voucher_id=voucher_id,
			statuses=statuses,
			vouch_type=vouch_type,
		)
		total = await self._db.fetchval(f"SELECT COUNT(*) FROM trust_vouches {where}", *args)
		page_args = [*args, limit, offset]
		rows = await self._db.fetch(
			f"""
			SELECT {_VOUCH_COLUMNS} FROM trust_vouches {where}
			ORDER BY created_at DESC, id DESC
			LIMIT ${len(args) + 1} OFFSET ${len(args) + 2}
			""",
			*page_args,
		)
		return [_row_to_vouch(row) for row in rows], int(total or 0)

	async def get_user_stat(self, user_id: str) -> UserStat | None:
		row = await self._db.fetchrow(
			"""
			SELECT user_id, events_attended, events_hosted, communities_joined, services_provided,
				vouches_given, vouches_received, connections_accepted, no_shows
			FROM trust_user_stats WHERE user_id = $1
			""",
			user_id,
		)
		if row is None:
			return None
		return UserStat(**{key: row[key] for key in row.keys()})

	async def increment_vouch_counters(self, voucher_id: str, vouchee_id: str) -> None:
		await self._db.execute(
			"""
			INSERT INTO trust_user_stats (user_id, vouches_given) VALUES ($1, 1)
			ON CONFLICT (user_id) DO UPDATE SET vouches_given = trust_user_stats.vouches_given + 1
			""",
			voucher_id,
		)
		await self._db.execute(
			"""
			INSERT INTO trust_user_stats (user_id, vouches_received) VALUES ($1, 1)
			ON CONFLICT (user_id) DO UPDATE SET vouches_received = trust_user_stats.vouches_received + 1
			""",
			vouchee_id,
		)

	async def list_public_trust_moments(self, receiver_id: str) -> list[TrustMoment]:
		rows = await self._db.fetch(
			"""
			SELECT id, giver_id, receiver_id, rating, moment_type, tags, is_public, created_at
			FROM trust_moments WHERE receiver_id = $1 AND is_public
			ORDER BY created_at
			""",
			receiver_id,
		)
		return [
			TrustMoment(
				id=str(row["id"]),
				giver_id=str(row["giver_id"]),
				receiver_id=str(row["receiver_id"]),
				rating=int(row["rating"]),
				moment_type=row["moment_type"],
				tags=frozenset(row["tags"] or ()),
				is_public=bool(row["is_public"]),
				created_at=row["created_at"],
			)
			for row in rows
		]

	async def are_connected(self, user_a: str, user_b: str) -> bool:
		value = await self._db.fetchval(
			"""
			SELECT EXISTS (
				SELECT 1 FROM trust_connections
				WHERE (user_a = $1 AND user_b = $2) OR (user_a = $2 AND user_b = $1)
			)
			""",
			user_a,
			user_b,
		)
		return bool(value)

	async def list_connection_ids(self, user_id: str) -> list[str]:
		rows = await self._db.fetch(
			"""
			SELECT CASE WHEN user_a = $1 THEN user_b ELSE user_a END AS peer
			FROM trust_connections WHERE user_a = $1 OR user_b = $1
			ORDER BY peer
			""",
			user_id,
		)
		return [str(row["peer"]) for row in rows]

	async def get_membership(self, community_id: str, user_id: str) -> CommunityMembership | None:
		row = await self._db.fetchrow(
			"""
			SELECT community_id, user_id, role, is_approved
			FROM trust_community_members WHERE community_id = $1 AND user_id = $2
			""",
			community_id,
			user_id,
		)
		if row is None:
			return None
		return CommunityMembership(
			community_id=str(row["community_id"]),
			user_id=str(row["user_id"]),
			role=CommunityRole(str(row["role"])),
			is_approved=bool(row["is_approved"]),
		)

	async def list_community_member_ids(self, community_id: str) -> list[str]:
		rows = await self._db.fetch(
			"""
			SELECT user_id FROM trust_community_members
			WHERE community_id = $1 AND is_approved
			ORDER BY user_id
			""",
			community_id,
		)
		return [str(row["user_id"]) for row in rows]

	async def append_history(self, entry: HistoryEntry) -> None:
		await self._db.execute(
			f"""
			INSERT INTO trust_score_history ({_HISTORY_COLUMNS}, change)
			VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
			""",
			entry.id,
			entry.user_id,
			entry.score,
			entry.previous_score,
			entry.reason,
			entry.component.value if entry.component else None,
			entry.related_entity_type,
			entry.related_entity_id,
			entry.timestamp,
			entry.change,
		)

	async def list_history(
		self,
		user_id: str,
		*,
		since: Optional[datetime] = None,
		limit: Optional[int] = None,
		newest_first: bool = False,
	) -> list[HistoryEntry]:
		order = "DESC" if newest_first else "ASC"
		rows = await self._db.fetch(
			f"""
			SELECT {_HISTORY_COLUMNS} FROM trust_score_history
			WHERE user_id = $1 AND ($2::timestamptz IS NULL OR timestamp >= $2)
			ORDER BY timestamp {order}, seq {order}
			LIMIT $3
			""",
			user_id,
			since,
			limit,
		)
		return [_row_to_history(row) for row in rows]

	async def insert_accountability(self, log: AccountabilityLog) -> None:
		await self._db.execute(
			f"""
			INSERT INTO trust_accountability_logs ({_ACCOUNTABILITY_COLUMNS})
			VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
			""",
			log.id,
			log.voucher_id,
			log.vouchee_id,
			log.vouch_id,
			log.impact_type.value,
			log.impact_value,
			log.reason,
			log.related_entity_type,
			log.related_entity_id,
			log.is_processed,
			log.created_at,
		)

	async def list_accountability(
		self,
		voucher_id: str,
		impact: Optional[AccountabilityImpact] = None,
	) -> list[AccountabilityLog]:
		rows = await self._db.fetch(
			f"""
			SELECT {_ACCOUNTABILITY_COLUMNS} FROM trust_accountability_logs
			WHERE voucher_id = $1 AND ($2::text IS NULL OR impact_type = $2)
			ORDER BY created_at
			""",
			voucher_id,
			impact.value if impact else None,
		)
		return [_row_to_accountability(row) for row in rows]


class PostgresTrustStore(TrustStore):
	"""Pool-backed store; transactions serialize on advisory locks per key."""

	def __init__(self, config: Settings, pool: asyncpg.Pool | None = None) -> None:
		self._config = config
		self._pool = pool

	@property
	def pool(self) -> asyncpg.Pool:
		if self._pool is None:
			raise RuntimeError("trust store is not open")
		return self._pool

	async def open(self) -> None:
		if self._pool is None:
			self._pool = await open_pool(self._config)

	async def close(self) -> None:
		await close_pool(self._pool)
		self._pool = None

	@asynccontextmanager
	async def transaction(self, *lock_keys: str) -> AsyncIterator[TrustRepository]:
		async with self.pool.acquire() as conn:
			async with conn.transaction():
				await advisory_lock(conn, lock_keys)
				yield PostgresTrustRepository(conn)

	def reader(self) -> TrustRepository:
		return PostgresTrustRepository(self.pool)
