"""Post log: one history row per platform attempt, written off the request path."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import select

from fanout.models.post_log import PostLog
from fanout.services.datetime_service import format_datetime, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PostLogRecord:
    user_id: str
    platform: str
    success: bool
    post_id: str | None
    text_length: int
    has_images: bool
    error: str | None


class PostLogSink(Protocol):
    """Accepts records without blocking the caller."""

    def record_post(self, record: PostLogRecord) -> None: ...


class QueuedPostLogSink:
    """Buffers records in a bounded queue drained by one background writer task.

    ``record_post`` never waits: when the queue is full the record is dropped
    with a warning.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        maxsize: int = 1000,
    ) -> None:
        self._session_factory = session_factory
        self._queue: asyncio.Queue[PostLogRecord] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task[None] | None = None

    def record_post(self, record: PostLogRecord) -> None:
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            logger.warning(
                "Post log queue full, dropping %s record for user %s",
                record.platform,
                record.user_id,
            )

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._run(), name="post-log-writer")

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Flush pending records (bounded by ``drain_timeout``) and stop the writer."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except TimeoutError:
            logger.warning("Post log writer did not drain %d records", self._queue.qsize())
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def flush(self) -> None:
        """Wait until every queued record has been written."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await write_post_log(self._session_factory, record)
            except Exception:
                logger.exception("Failed to write post log for %s", record.platform)
            finally:
                self._queue.task_done()


async def write_post_log(
    session_factory: async_sessionmaker[AsyncSession],
    record: PostLogRecord,
) -> None:
    async with session_factory() as session:
        session.add(
            PostLog(
                user_id=record.user_id,
                platform=record.platform,
                post_id=record.post_id,
                success=record.success,
                content_length=record.text_length,
                has_images=record.has_images,
                error_message=record.error,
                created_at=format_datetime(now_utc()),
            )
        )
        await session.commit()


async def get_post_history(
    session: AsyncSession,
    user_id: str,
    limit: int = 50,
) -> list[PostLog]:
    """Return the user's post log entries, newest first."""
    stmt = (
        select(PostLog)
        .where(PostLog.user_id == user_id)
        .order_by(PostLog.created_at.desc(), PostLog.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
