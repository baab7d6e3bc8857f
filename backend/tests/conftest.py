import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from trustnet.domain.config import ConfigProvider
from trustnet.domain.container import TrustService
from trustnet.domain.repository import InMemoryTrustStore


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from trustnet.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture
def store():
	return InMemoryTrustStore()


@pytest_asyncio.fixture
async def trust_service(store):
	service = TrustService(store, config=ConfigProvider())
	await service.open()
	try:
		yield service
	finally:
		await service.close()
