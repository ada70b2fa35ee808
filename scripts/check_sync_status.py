#!/usr/bin/env python3
"""
Print the sync state of every athlete.
Useful for spotting syncs stuck in SYNCING after a crash or redeploy.
"""

import asyncio

from app.core.database import async_session_maker, init_db
from app.services.store import ActivityStore


async def main():
    await init_db()
    store = ActivityStore(async_session_maker)
    owners = await store.list_owners()

    if not owners:
        print("No athletes found.")
        return

    print("Current sync status:")
    print(f"{'athlete_id':<14} {'status':<12} {'progress':>9} {'total':>7}  {'started_at':<20} {'last_sync_at':<20}")
    for owner in owners:
        started = owner.sync_started_at.isoformat(timespec="seconds") if owner.sync_started_at else "-"
        last_sync = owner.last_sync_at.isoformat(timespec="seconds") if owner.last_sync_at else "-"
        total = owner.sync_total if owner.sync_total is not None else "-"
        print(
            f"{owner.athlete_id:<14} {owner.sync_status.value:<12} {owner.sync_progress:>9} {total:>7}  "
            f"{started:<20} {last_sync:<20}"
        )


if __name__ == "__main__":
    asyncio.run(main())
