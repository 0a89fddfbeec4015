"""Credential store: encrypted per-user platform credentials."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import select

from fanout.models.credential import PlatformCredential
from fanout.services.datetime_service import format_datetime, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from fanout.services.crypto_service import CredentialCipher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredCredential:
    """Ciphertext of one platform's credential bag as read from storage."""

    platform: str
    credentials_ciphertext: str


class CredentialStore(Protocol):
    async def get_credentials(
        self, user_id: str, platform: str | None = None
    ) -> list[StoredCredential]: ...


class DatabaseCredentialStore:
    """Reads credentials from the ``platform_credentials`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_credentials(
        self, user_id: str, platform: str | None = None
    ) -> list[StoredCredential]:
        stmt = select(PlatformCredential).where(PlatformCredential.user_id == user_id)
        if platform is not None:
            stmt = stmt.where(PlatformCredential.platform == platform)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [
                StoredCredential(row.platform, row.credentials) for row in result.scalars().all()
            ]


async def get_credential(
    session: AsyncSession, user_id: str, platform: str
) -> PlatformCredential | None:
    stmt = select(PlatformCredential).where(
        PlatformCredential.user_id == user_id,
        PlatformCredential.platform == platform,
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def save_credentials(
    session: AsyncSession,
    user_id: str,
    platform: str,
    credentials: dict[str, Any],
    cipher: CredentialCipher,
) -> PlatformCredential:
    """Create or replace the user's credentials for a platform, encrypted at rest."""
    now = format_datetime(now_utc())
    encrypted = cipher.encrypt_json(credentials)
    existing = await get_credential(session, user_id, platform)
    if existing is None:
        row = PlatformCredential(
            user_id=user_id,
            platform=platform,
            credentials=encrypted,
            created_at=now,
            updated_at=now,
        )
        session.add(row)
    else:
        existing.credentials = encrypted
        existing.updated_at = now
        row = existing
    await session.commit()
    await session.refresh(row)
    logger.info("Stored %s credentials for user %s", platform, user_id)
    return row


async def list_credentials(session: AsyncSession, user_id: str) -> list[PlatformCredential]:
    """List the user's stored credential rows, ordered by platform."""
    stmt = (
        select(PlatformCredential)
        .where(PlatformCredential.user_id == user_id)
        .order_by(PlatformCredential.platform)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def delete_credentials(session: AsyncSession, user_id: str, platform: str) -> bool:
    """Delete the user's credentials for a platform. Returns True if found and deleted."""
    row = await get_credential(session, user_id, platform)
    if row is None:
        return False
    await session.delete(row)
    await session.commit()
    logger.info("Deleted %s credentials for user %s", platform, user_id)
    return True
