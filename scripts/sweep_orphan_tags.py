#!/usr/bin/env python3
"""Delete tags that no article references any more."""
import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.append(os.getcwd())

from folio.database import AsyncSessionLocal, close_db
from folio.services.tag import TagService

logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s")


async def sweep() -> int:
    async with AsyncSessionLocal() as session:
        result = await TagService(session).sweep_orphans()
    await close_db()

    if not result.is_success:
        print(f"Error: {result.error_message}")
        return 1

    if result.value:
        print(f"Deleted {len(result.value)} orphaned tags: {', '.join(result.value)}")
    else:
        print("No orphaned tags.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(sweep()))
