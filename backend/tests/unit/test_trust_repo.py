from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest

from trustnet.domain.container import build_store
from trustnet.domain.models import VouchStatus, VouchType
from trustnet.domain.repository import InMemoryTrustStore, score_lock_key, slot_lock_key
from trustnet.infra.trust_repo import PostgresTrustRepository, PostgresTrustStore, _vouch_filters
from trustnet.settings import settings

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


class _RecordingConnection:
	def __init__(self, rows=None, value=0):
		self.calls: list[tuple] = []
		self.rows = rows or []
		self.value = value

	async def execute(self, query, *args):
		self.calls.append(("execute", query, args))

	async def fetch(self, query, *args):
		self.calls.append(("fetch", query, args))
		return self.rows

	async def fetchrow(self, query, *args):
		self.calls.append(("fetchrow", query, args))
		return self.rows[0] if self.rows else None

	async def fetchval(self, query, *args):
		self.calls.append(("fetchval", query, args))
		return self.value

	@asynccontextmanager
	async def transaction(self):
		self.calls.append(("begin", None, ()))
		yield
		self.calls.append(("commit", None, ()))


class _FakePool:
	def __init__(self, conn):
		self.conn = conn

	@asynccontextmanager
	async def acquire(self):
		yield self.conn


def _vouch_row(**overrides):
	row = {
		"id": "v1",
		"voucher_id": "alice",
		"vouchee_id": "bob",
		"vouch_type": "SECONDARY",
		"status": "APPROVED",
		"weight_percentage": 30,
		"community_id": None,
		"message": None,
		"is_community_vouch": False,
		"created_at": NOW,
		"approved_at": NOW,
		"revoked_at": None,
		"revoke_reason": None,
	}
	row.update(overrides)
	return row


def test_vouch_filters_number_placeholders_in_order():
	where, args = _vouch_filters(
		vouchee_id="bob",
		voucher_id=None,
		statuses=[VouchStatus.APPROVED, VouchStatus.ACTIVE],
		vouch_type=VouchType.PRIMARY,
	)
	assert where == "WHERE vouchee_id = $1 AND status = ANY($2::text[]) AND vouch_type = $3"
	assert args == ["bob", ["APPROVED", "ACTIVE"], "PRIMARY"]


@pytest.mark.asyncio
async def test_list_vouches_maps_rows_and_total():
	conn = _RecordingConnection(rows=[_vouch_row()], value=4)
	repo = PostgresTrustRepository(conn)

	items, total = await repo.list_vouches(vouchee_id="bob", limit=1, offset=2)

	assert total == 4
	assert items[0].vouch_type == VouchType.SECONDARY
	assert items[0].status == VouchStatus.APPROVED
	assert items[0].weight_percentage == 30.0
	_, query, args = conn.calls[-1]
	assert "LIMIT $2 OFFSET $3" in query
	assert args == ("bob", 1, 2)


@pytest.mark.asyncio
async def test_transaction_takes_sorted_advisory_locks():
	conn = _RecordingConnection()
	store = PostgresTrustStore(settings, pool=_FakePool(conn))
	keys = (slot_lock_key("bob", VouchType.SECONDARY), slot_lock_key("bob", VouchType.PRIMARY), score_lock_key("bob"))

	async with store.transaction(*keys) as repo:
		assert isinstance(repo, PostgresTrustRepository)

	locks = [args[0] for kind, query, args in conn.calls if kind == "execute" and "pg_advisory_xact_lock" in query]
	assert locks == sorted(keys)
	assert conn.calls[0][0] == "begin"
	assert conn.calls[-1][0] == "commit"


def test_reader_requires_open_store():
	store = PostgresTrustStore(settings)
	with pytest.raises(RuntimeError):
		store.reader()


def test_build_store_follows_backend_setting():
	assert isinstance(build_store(settings.model_copy(update={"trust_store_backend": "postgres"})), PostgresTrustStore)
	assert isinstance(build_store(settings.model_copy(update={"trust_store_backend": "memory"})), InMemoryTrustStore)
