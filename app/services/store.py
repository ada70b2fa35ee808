"""Persistence operations used by the sync engine and API.

Every method opens its own short-lived session and commits before
returning, so whatever a sync has written survives a crash mid-run.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.database import (
    UNKNOWN_COUNTRY,
    Activity,
    LocationStat,
    SyncStatus,
    Token,
    User,
)
from app.services.errors import OwnerDeleted

logger = logging.getLogger(__name__)


def raise_if_owner_missing(error: IntegrityError, athlete_id: str) -> None:
    """Translate a foreign key violation into OwnerDeleted."""
    if "FOREIGN KEY" in str(error.orig):
        raise OwnerDeleted(athlete_id) from error


ACTIVITY_COLUMNS = (
    "athlete_id",
    "activity_id",
    "name",
    "type",
    "distance",
    "moving_time",
    "start_date",
    "country",
    "city",
    "state",
)


class ActivityStore:
    """Activity, owner and token persistence on top of an async session factory."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    # --- Owners -------------------------------------------------------------

    async def owner_exists(self, athlete_id: str) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(
                select(User.athlete_id).where(User.athlete_id == athlete_id)
            )
            return result.scalar_one_or_none() is not None

    async def get_owner(self, athlete_id: str) -> Optional[User]:
        async with self.session_maker() as session:
            return await session.get(User, athlete_id)

    async def list_owners(self) -> list[User]:
        async with self.session_maker() as session:
            result = await session.execute(select(User).order_by(User.athlete_id))
            return list(result.scalars().all())

    async def upsert_owner(self, athlete_id: str) -> User:
        """Create the owner row if missing (first authentication)."""
        async with self.session_maker() as session:
            user = await session.get(User, athlete_id)
            if user is None:
                user = User(
                    athlete_id=athlete_id,
                    sync_status=SyncStatus.NOT_STARTED,
                    sync_progress=0,
                )
                session.add(user)
                await session.commit()
                logger.info(f"Created athlete {athlete_id}")
            return user

    async def update_owner(self, athlete_id: str, **fields: Any) -> None:
        """
        Update sync fields on an owner.

        Raises:
            OwnerDeleted: if the owner row no longer exists.
        """
        async with self.session_maker() as session:
            result = await session.execute(
                update(User).where(User.athlete_id == athlete_id).values(**fields)
            )
            await session.commit()
        if result.rowcount == 0:
            raise OwnerDeleted(athlete_id)

    async def fail_syncing_owners(self, stale_before: Optional[datetime] = None,
                                  exclude: Iterable[str] = ()) -> int:
        """
        Mark SYNCING owners as FAILED so they can be resumed.

        Args:
            stale_before: Only touch owners whose heartbeat is older than this
                (or missing). None means every SYNCING owner.
            exclude: Athlete ids known to be actively syncing in this process.

        Returns:
            Number of owners updated.
        """
        stmt = update(User).where(User.sync_status == SyncStatus.SYNCING)
        if stale_before is not None:
            stmt = stmt.where(
                (User.sync_last_activity_at.is_(None))
                | (User.sync_last_activity_at < stale_before)
            )
        excluded = list(exclude)
        if excluded:
            stmt = stmt.where(User.athlete_id.not_in(excluded))

        async with self.session_maker() as session:
            result = await session.execute(stmt.values(sync_status=SyncStatus.FAILED))
            await session.commit()
        return result.rowcount

    async def delete_owner(self, athlete_id: str) -> bool:
        """Delete an owner and everything it owns. Returns False if absent."""
        async with self.session_maker() as session:
            await session.execute(delete(LocationStat).where(LocationStat.athlete_id == athlete_id))
            await session.execute(delete(Activity).where(Activity.athlete_id == athlete_id))
            await session.execute(delete(Token).where(Token.athlete_id == athlete_id))
            result = await session.execute(delete(User).where(User.athlete_id == athlete_id))
            await session.commit()
        return result.rowcount > 0

    # --- Tokens -------------------------------------------------------------

    async def get_token(self, athlete_id: str) -> Optional[Token]:
        async with self.session_maker() as session:
            return await session.get(Token, athlete_id)

    async def save_token(
        self,
        athlete_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: int,
        scopes: Optional[str] = None,
    ) -> None:
        values = {
            "athlete_id": athlete_id,
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": expires_at,
        }
        if scopes is not None:
            values["scopes"] = scopes

        stmt = insert(Token).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["athlete_id"],
            set_={k: v for k, v in values.items() if k != "athlete_id"},
        )
        async with self.session_maker() as session:
            try:
                await session.execute(stmt)
                await session.commit()
            except IntegrityError as e:
                raise_if_owner_missing(e, athlete_id)
                raise

    # --- Activities ---------------------------------------------------------

    async def insert_activities(self, rows: list[dict[str, Any]]) -> int:
        """
        Insert activity rows, ignoring any (athlete_id, activity_id) already stored.

        Raises:
            OwnerDeleted: if the owner row is gone (foreign key violation).
        """
        if not rows:
            return 0

        data = [{col: row.get(col) for col in ACTIVITY_COLUMNS} for row in rows]
        stmt = insert(Activity).values(data).on_conflict_do_nothing(
            index_elements=["athlete_id", "activity_id"],
        )
        async with self.session_maker() as session:
            try:
                result = await session.execute(stmt)
                await session.commit()
            except IntegrityError as e:
                raise_if_owner_missing(e, rows[0]["athlete_id"])
                raise
        return result.rowcount

    async def delete_activities(self, athlete_id: str, activity_ids: Iterable[str]) -> int:
        ids = list(activity_ids)
        if not ids:
            return 0
        async with self.session_maker() as session:
            result = await session.execute(
                delete(Activity).where(
                    Activity.athlete_id == athlete_id,
                    Activity.activity_id.in_(ids),
                )
            )
            await session.commit()
        return result.rowcount

    async def count_activities(self, athlete_id: str) -> int:
        async with self.session_maker() as session:
            result = await session.execute(
                select(func.count()).select_from(Activity).where(Activity.athlete_id == athlete_id)
            )
            return result.scalar_one()

    async def resolved_activity_ids(self, athlete_id: str, activity_ids: Iterable[str]) -> set[str]:
        """Return the subset of ids already stored with a real (non-Unknown) country."""
        ids = list(activity_ids)
        if not ids:
            return set()
        async with self.session_maker() as session:
            result = await session.execute(
                select(Activity.activity_id).where(
                    Activity.athlete_id == athlete_id,
                    Activity.activity_id.in_(ids),
                    Activity.country != UNKNOWN_COUNTRY,
                )
            )
            return set(result.scalars().all())

    async def clear_location_data(self, athlete_id: str) -> None:
        """Remove all activities and summaries for an owner in one transaction."""
        async with self.session_maker() as session:
            await session.execute(delete(Activity).where(Activity.athlete_id == athlete_id))
            await session.execute(delete(LocationStat).where(LocationStat.athlete_id == athlete_id))
            await session.commit()

    # --- Summaries ----------------------------------------------------------

    async def list_location_stats(self, athlete_id: str) -> list[LocationStat]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(LocationStat)
                .where(LocationStat.athlete_id == athlete_id)
                .order_by(LocationStat.activity_count.desc(), LocationStat.country, LocationStat.city)
            )
            return list(result.scalars().all())
