"""Per-user settings: the Nostr relay list."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from sqlalchemy import delete, select

from fanout.models.relay import NostrRelay

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelaySetting:
    url: str
    read: bool = True
    write: bool = True


DEFAULT_RELAY_SETTINGS: tuple[RelaySetting, ...] = (
    RelaySetting("wss://relay.damus.io"),
    RelaySetting("wss://nos.lol"),
    RelaySetting("wss://relay.nostr.band"),
    RelaySetting("wss://nostr-pub.wellorder.net"),
    RelaySetting("wss://relay.snort.social"),
)


def validate_relay_url(url: str) -> str:
    """Return the stripped URL or raise ValueError if it is not ws:// or wss://."""
    candidate = url.strip().rstrip("/")
    parsed = urlparse(candidate)
    if parsed.scheme not in ("ws", "wss") or not parsed.hostname:
        msg = f"Invalid relay URL: {url!r}. Must start with ws:// or wss://"
        raise ValueError(msg)
    return candidate


async def _stored_relays(session: AsyncSession, user_id: str) -> list[NostrRelay]:
    stmt = (
        select(NostrRelay)
        .where(NostrRelay.user_id == user_id)
        .order_by(NostrRelay.position, NostrRelay.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_relays(session: AsyncSession, user_id: str) -> list[RelaySetting]:
    """Return the user's relays, or the defaults when none are stored."""
    rows = await _stored_relays(session, user_id)
    if not rows:
        return list(DEFAULT_RELAY_SETTINGS)
    return [RelaySetting(row.url, row.read, row.write) for row in rows]


async def get_write_relay_urls(session: AsyncSession, user_id: str) -> list[str] | None:
    """Return the URLs of the user's write relays, or None if nothing is configured."""
    rows = await _stored_relays(session, user_id)
    if not rows:
        return None
    return [row.url for row in rows if row.write]


async def set_relays(
    session: AsyncSession,
    user_id: str,
    relays: Sequence[RelaySetting],
) -> list[RelaySetting]:
    """Replace the user's relay list. Raises ValueError on invalid or duplicate URLs."""
    cleaned: list[RelaySetting] = []
    seen: set[str] = set()
    for relay in relays:
        url = validate_relay_url(relay.url)
        if url in seen:
            msg = f"Duplicate relay URL: {url}"
            raise ValueError(msg)
        seen.add(url)
        cleaned.append(RelaySetting(url, relay.read, relay.write))

    await session.execute(delete(NostrRelay).where(NostrRelay.user_id == user_id))
    for position, relay in enumerate(cleaned):
        session.add(
            NostrRelay(
                user_id=user_id,
                url=relay.url,
                read=relay.read,
                write=relay.write,
                position=position,
            )
        )
    await session.commit()
    logger.info("Saved %d relays for user %s", len(cleaned), user_id)
    return cleaned
