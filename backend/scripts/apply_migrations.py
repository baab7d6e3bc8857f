"""Apply the trust engine SQL migrations in filename order.

Usage: python backend/scripts/apply_migrations.py [migration_filename ...]
"""

import asyncio
import logging
import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from trustnet.infra.postgres import close_pool, open_pool
from trustnet.obs.logging import configure_logging
from trustnet.settings import settings

MIGRATIONS_DIR = BACKEND_ROOT / "migrations"

logger = logging.getLogger("trustnet.migrations")


def _selected(names: list[str]) -> list[Path]:
    if names:
        paths = [MIGRATIONS_DIR / name for name in names]
        missing = [str(path) for path in paths if not path.exists()]
        if missing:
            raise SystemExit(f"Migration file not found: {', '.join(missing)}")
        return paths
    return sorted(MIGRATIONS_DIR.glob("*.sql"))


async def main(names: list[str]) -> None:
    configure_logging()
    files = _selected(names)
    pool = await open_pool(settings)
    try:
        async with pool.acquire() as conn:
            for path in files:
                logger.info("applying migration", extra={"migration": path.name})
                # Statements use IF NOT EXISTS so re-running a file is safe
                async with conn.transaction():
                    await conn.execute(path.read_text(encoding="utf-8"))
                logger.info("migration applied", extra={"migration": path.name})
    finally:
        await close_pool(pool)


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
