"""Account data lifecycle: auto-delete preference, activity tracking and erasure."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from fanout.models.credential import PlatformCredential
from fanout.models.post_log import PostLog
from fanout.models.relay import NostrRelay
from fanout.models.user_settings import UserSettings
from fanout.services.datetime_service import format_datetime, now_utc, parse_stored

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_INACTIVE_DAYS = 30


@dataclass(frozen=True)
class AutoDeleteSetting:
    enabled: bool
    last_activity: datetime


@dataclass(frozen=True)
class DeletedAccountData:
    """Number of rows removed per kind of data."""

    credentials: int = 0
    relays: int = 0
    post_logs: int = 0
    settings: int = 0

    @property
    def total(self) -> int:
        return self.credentials + self.relays + self.post_logs + self.settings


async def _get_row(session: AsyncSession, user_id: str) -> UserSettings | None:
    result = await session.execute(select(UserSettings).where(UserSettings.user_id == user_id))
    return result.scalar_one_or_none()


async def _upsert(
    session: AsyncSession,
    user_id: str,
    now: datetime,
    auto_delete: bool | None = None,
) -> UserSettings:
    row = await _get_row(session, user_id)
    if row is None:
        row = UserSettings(user_id=user_id, auto_delete=bool(auto_delete))
        session.add(row)
    elif auto_delete is not None:
        row.auto_delete = auto_delete
    row.last_activity = format_datetime(now)
    await session.commit()
    return row


async def record_activity(
    session: AsyncSession,
    user_id: str,
    now: datetime | None = None,
) -> None:
    """Mark the user as active, postponing any auto-delete."""
    await _upsert(session, user_id, now or now_utc())


async def get_auto_delete(session: AsyncSession, user_id: str) -> AutoDeleteSetting:
    """Return the user's auto-delete preference; users never seen are disabled and active now."""
    row = await _get_row(session, user_id)
    if row is None:
        return AutoDeleteSetting(enabled=False, last_activity=now_utc())
    return AutoDeleteSetting(enabled=row.auto_delete, last_activity=parse_stored(row.last_activity))


async def set_auto_delete(
    session: AsyncSession,
    user_id: str,
    enabled: bool,
    now: datetime | None = None,
) -> AutoDeleteSetting:
    """Store the preference; changing it also counts as activity."""
    now = now or now_utc()
    row = await _upsert(session, user_id, now, auto_delete=enabled)
    logger.info("Auto-delete %s for user %s", "enabled" if enabled else "disabled", user_id)
    return AutoDeleteSetting(enabled=row.auto_delete, last_activity=now)


async def delete_all_user_data(session: AsyncSession, user_id: str) -> DeletedAccountData:
    """Permanently remove everything stored for the user in one transaction."""
    counts: dict[str, int] = {}
    for name, model in (
        ("credentials", PlatformCredential),
        ("relays", NostrRelay),
        ("post_logs", PostLog),
        ("settings", UserSettings),
    ):
        result = await session.execute(delete(model).where(model.user_id == user_id))
        counts[name] = result.rowcount or 0
    await session.commit()
    deleted = DeletedAccountData(**counts)
    logger.info("Deleted all account data for user %s (%d rows)", user_id, deleted.total)
    return deleted


async def purge_inactive_users(
    session: AsyncSession,
    inactive_days: int = DEFAULT_INACTIVE_DAYS,
    now: datetime | None = None,
) -> list[str]:
    """Erase the data of auto-delete users idle for longer than ``inactive_days``.

    Returns the purged user ids.
    """
    cutoff = format_datetime((now or now_utc()) - timedelta(days=inactive_days))
    # Stored timestamps are all UTC in one fixed-width format, so they sort as text.
    stmt = select(UserSettings.user_id).where(
        UserSettings.auto_delete.is_(True),
        UserSettings.last_activity < cutoff,
    )
    user_ids = list((await session.execute(stmt)).scalars().all())
    for user_id in user_ids:
        logger.info("Auto-deleting inactive user %s", user_id)
        await delete_all_user_data(session, user_id)
    return user_ids


async def run_purge_loop(
    session_factory: async_sessionmaker[AsyncSession],
    inactive_days: int,
    interval_seconds: float,
) -> None:
    """Purge inactive users now and then every ``interval_seconds`` until cancelled."""
    while True:
        try:
            async with session_factory() as session:
                purged = await purge_inactive_users(session, inactive_days)
            if purged:
                logger.info("Auto-delete purged %d inactive users", len(purged))
        except Exception:
            logger.exception("Auto-delete purge failed")
        await asyncio.sleep(interval_seconds)
