"""AsyncPG pool management for the trust store."""

from __future__ import annotations

from typing import Iterable

import asyncpg

from trustnet.settings import Settings


async def open_pool(config: Settings) -> asyncpg.pool.Pool:
	"""Create a pool sized from settings; the caller owns its lifecycle."""
	# Force 127.0.0.1 instead of localhost to avoid IPv6 resolution issues
	dsn = config.postgres_url.replace("localhost", "127.0.0.1")
	return await asyncpg.create_pool(
		dsn=dsn,
		min_size=config.postgres_min_pool_size,
		max_size=config.postgres_max_pool_size,
		ssl="require" if config.postgres_ssl else "disable",
	)


async def close_pool(pool: asyncpg.pool.Pool | None) -> None:
	if pool is not None:
		await pool.close()


async def advisory_lock(conn: asyncpg.Connection, keys: Iterable[str]) -> None:
	"""Take transaction-scoped advisory locks in sorted order."""
	for key in sorted(set(keys)):
		await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", key)
