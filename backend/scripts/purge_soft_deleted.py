"""Physically remove chat rows soft-deleted longer than RETENTION_DAYS.

Usage: python scripts/purge_soft_deleted.py [--days N] [--batch N]
"""

import argparse
import asyncio
import sys

from safechat.infra.postgres import close_pool, get_pool
from safechat.jobs import retention
from safechat.obs.logging import configure_logging


async def main(days: int | None, batch: int | None) -> None:
    configure_logging()
    pool = await get_pool()
    try:
        removed = await retention.run(pool, retention_days=days, batch_size=batch)
    finally:
        await close_pool()
    for kind, count in removed.items():
        print(f"{kind}: {count}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--days", type=int, default=None)
    parser.add_argument("--batch", type=int, default=None)
    args = parser.parse_args()
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(main(args.days, args.batch))
