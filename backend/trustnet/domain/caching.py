"""Redis-backed read cache for badge and leaderboard views."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from redis.exceptions import RedisError

from trustnet.infra.redis import RedisProxy, redis_client
from trustnet.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

CacheBuilder = Callable[[], Awaitable[Any]]

_REDIS_FAILURES = (RedisError, ConnectionError, OSError)


class TrustReadCache:
	"""JSON cache with singleflight, generation invalidation and a last-known copy.

	Every key embeds the namespace generation, so `invalidate()` is a single
	INCR. The stale copy outlives invalidation and is only served when a
	rebuild fails.
	"""

	def __init__(
		self,
		redis: RedisProxy | None = None,
		*,
		namespace: str = "trust:read:",
		stale_ttl: int = 86400,
	) -> None:
		self.redis = redis or redis_client
		self.namespace = namespace
		self.stale_ttl = stale_ttl
		self._locks: dict[str, asyncio.Lock] = {}

	def _lock(self, suffix: str) -> asyncio.Lock:
		if suffix not in self._locks:
			self._locks[suffix] = asyncio.Lock()
		return self._locks[suffix]

	@property
	def _generation_key(self) -> str:
		return f"{self.namespace}gen"

	def _stale_key(self, suffix: str) -> str:
		return f"{self.namespace}stale:{suffix}"

	async def _generation(self) -> int | None:
		try:
			raw = await self.redis.get(self._generation_key)
		except _REDIS_FAILURES:
			self._note_error("generation")
			return None
		return int(raw) if raw else 0

	def _note_error(self, op: str) -> None:
		obs_metrics.inc_cache_event(self.namespace, "error")
		logger.warning("trust read cache unavailable", extra={"cache_op": op, "namespace": self.namespace})

	async def _read(self, key: str) -> Any | None:
		try:
			raw = await self.redis.get(key)
		except _REDIS_FAILURES:
			self._note_error("get")
			return None
		if not raw:
			return None
		try:
			decoded = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
			return json.loads(decoded)
		except json.JSONDecodeError:
			return None

	async def _write(self, key: str, value: Any, ttl: int) -> None:
		try:
			await self.redis.set(key, json.dumps(value), ex=ttl)
		except _REDIS_FAILURES:
			self._note_error("set")

	async def get_or_build(self, suffix: str, *, ttl: int, builder: CacheBuilder) -> Any:
		generation = await self._generation()
		if generation is None:
			# Redis is down; build directly and never block on the cache
			return await builder()
		key = f"{self.namespace}v{generation}:{suffix}"
		cached = await self._read(key)
		if cached is not None:
			obs_metrics.inc_cache_event(self.namespace, "hit")
			return cached
		async with self._lock(suffix):
			cached = await self._read(key)
			if cached is not None:
				obs_metrics.inc_cache_event(self.namespace, "hit")
				return cached
			obs_metrics.inc_cache_event(self.namespace, "miss")
			try:
				value = await builder()
			except Exception:
				stale = await self._read(self._stale_key(suffix))
				if stale is None:
					raise
				obs_metrics.inc_cache_event(self.namespace, "stale")
				logger.exception("trust read rebuild failed; serving last-known value", extra={"cache_key": suffix})
				return stale
			await self._write(key, value, ttl)
			await self._write(self._stale_key(suffix), value, self.stale_ttl)
			return value

	async def invalidate(self) -> None:
		try:
			await self.redis.incr(self._generation_key)
		except _REDIS_FAILURES:
			self._note_error("invalidate")
