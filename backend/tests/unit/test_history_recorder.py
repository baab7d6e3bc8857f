import asyncio

import pytest
import pytest_asyncio

from trustnet.domain.config import ConfigProvider
from trustnet.domain.container import TrustService
from trustnet.domain.history import HistoryRecorder
from trustnet.domain.models import HistoryEntry, ScoreComponent, VouchType
from trustnet.domain.repository import InMemoryTrustRepository, InMemoryTrustStore


class _BrokenHistoryRepository(InMemoryTrustRepository):
	async def append_history(self, entry: HistoryEntry) -> None:
		raise RuntimeError("history table unavailable")


class _BrokenHistoryStore(InMemoryTrustStore):
	def reader(self):
		return _BrokenHistoryRepository(self.state)


@pytest_asyncio.fixture
async def broken_service():
	store = _BrokenHistoryStore()
	service = TrustService(store, config=ConfigProvider())
	await service.open()
	try:
		yield service
	finally:
		await service.close()


@pytest.mark.asyncio
async def test_recorder_writes_in_fifo_order():
	store = InMemoryTrustStore()
	recorder = HistoryRecorder(store)
	recorder.start()
	futures = [
		recorder.record(HistoryEntry(user_id="u1", score=float(step + 1), previous_score=float(step), reason="step"))
		for step in range(5)
	]
	written = await asyncio.gather(*futures)
	await recorder.close()

	assert all(entry is not None for entry in written)
	assert [entry.score for entry in store.state.history] == [1.0, 2.0, 3.0, 4.0, 5.0]
	assert not recorder.running


@pytest.mark.asyncio
async def test_full_queue_drops_entry_without_raising():
	store = InMemoryTrustStore()
	recorder = HistoryRecorder(store, max_queue=1)
	first = recorder.record(HistoryEntry(user_id="u1", score=1.0, previous_score=0.0, reason="a"))
	second = recorder.record(HistoryEntry(user_id="u1", score=2.0, previous_score=1.0, reason="b"))
	assert second.done()
	assert second.result() is None
	assert (await first) is not None
	await recorder.close()


@pytest.mark.asyncio
async def test_write_failure_resolves_to_none_and_keeps_mutation(broken_service):
	store = broken_service.store
	store.add_user("bob")
	store.add_user("alice")
	store.connect("alice", "bob")

	requested = await broken_service.request_vouch("alice", "bob", VouchType.PRIMARY)
	result = await broken_service.ledger.respond_to_vouch_request(requested.vouch.id, "alice", "approve")

	assert result.score.changed is True
	assert result.score.history is not None
	assert (await result.score.history) is None
	assert store.state.users["bob"].trust_score == pytest.approx(12.0)
	assert store.state.history == []


@pytest.mark.asyncio
async def test_concurrent_recomputes_keep_history_chained(store, trust_service):
	store.add_user("bob")
	vouchers = ["a", "b", "c"]
	for voucher in vouchers:
		store.add_user(voucher)
		store.connect(voucher, "bob")
	pending = [await trust_service.request_vouch(voucher, "bob", VouchType.SECONDARY) for voucher in vouchers]

	async def _bump_activity() -> None:
		store.set_stat("bob", events_attended=2)
		await trust_service.recalculate("bob", component=ScoreComponent.ACTIVITY)

	await asyncio.gather(
		*(trust_service.respond_to_vouch_request(item.vouch.id, item.vouch.voucher_id, "approve") for item in pending),
		_bump_activity(),
	)
	await trust_service.recorder.flush()

	rows = [entry for entry in store.state.history if entry.user_id == "bob"]
	assert rows[0].previous_score == 0.0
	for earlier, later in zip(rows, rows[1:]):
		assert later.previous_score == earlier.score
	assert rows[-1].score == store.state.users["bob"].trust_score
