#!/usr/bin/env python3
"""
Mark every SYNCING athlete as FAILED so their sync can be resumed.
Only run this while the server is stopped; a live sync would be mislabelled.
"""

import asyncio

from app.core.database import async_session_maker, init_db
from app.services.store import ActivityStore


async def main():
    await init_db()
    count = await ActivityStore(async_session_maker).fail_syncing_owners()
    print(f"Fixed {count} stuck sync(s)")


if __name__ == "__main__":
    asyncio.run(main())
