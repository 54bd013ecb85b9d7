"""Apply SQL migrations from backend/migrations in filename order.

Usage: python scripts/apply_migration.py [migration_filename ...]
"""

import asyncio
import sys
from pathlib import Path

from safechat.infra.postgres import close_pool, get_pool

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


async def apply_migrations(filenames: list[str]) -> None:
    paths = [MIGRATIONS_DIR / name for name in filenames] or sorted(MIGRATIONS_DIR.glob("*.sql"))
    pool = await get_pool()
    try:
        for path in paths:
            if not path.exists():
                print(f"Migration file not found: {path}")
                sys.exit(1)
            print(f"Applying migration: {path.name}")
            sql = path.read_text(encoding="utf-8")
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(sql)
        print("Migrations applied successfully.")
    finally:
        await close_pool()


if __name__ == "__main__":
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(apply_migrations(sys.argv[1:]))
