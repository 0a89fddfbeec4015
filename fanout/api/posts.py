"""Posting endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.api.deps import (
    get_cipher,
    get_post_log,
    get_registry,
    get_session,
    get_settings,
    require_user_id,
)
from fanout.config import Settings
from fanout.exceptions import PostValidationError
from fanout.platforms.base import PostContent
from fanout.platforms.registry import PlatformRegistry
from fanout.schemas.post import (
    PostHistoryEntry,
    PostHistoryResponse,
    PostRequest,
    PostResponse,
    PostResultResponse,
)
from fanout.services.account_service import record_activity
from fanout.services.credential_service import DatabaseCredentialStore
from fanout.services.crypto_service import CredentialCipher
from fanout.services.datetime_service import format_iso
from fanout.services.post_log_service import PostLogSink, get_post_history
from fanout.services.posting_service import run_post_job
from fanout.services.settings_service import get_write_relay_urls

router = APIRouter(prefix="/api", tags=["posts"])


def _check_images(images: list[str], settings: Settings) -> None:
    if len(images) > settings.max_images_per_post:
        msg = f"At most {settings.max_images_per_post} images can be attached"
        raise PostValidationError(msg)
    for index, image in enumerate(images):
        encoded = image.partition(",")[2] or image
        if len(encoded) * 3 // 4 > settings.max_image_bytes:
            msg = f"Image {index + 1} exceeds {settings.max_image_bytes} bytes"
            raise PostValidationError(msg)


@router.post("/post", response_model=PostResponse)
async def create_post_endpoint(
    body: PostRequest,
    request: Request,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    registry: Annotated[PlatformRegistry, Depends(get_registry)],
    cipher: Annotated[CredentialCipher, Depends(get_cipher)],
    post_log: Annotated[PostLogSink, Depends(get_post_log)],
    user_id: Annotated[str, Depends(require_user_id)],
) -> PostResponse:
    """Publish a message to the selected platforms.

    Per-platform failures are reported in ``results``; only request-level
    problems (empty message, no or unknown platforms) return 400.
    """
    _check_images(body.images, settings)

    relays = await get_write_relay_urls(session, user_id)
    content = PostContent(
        text=body.message,
        images=tuple(body.images),
        metadata={"relays": relays} if relays else {},
    )
    job = await run_post_job(
        user_id,
        content,
        body.platforms,
        credential_store=DatabaseCredentialStore(request.app.state.session_factory),
        decrypt=cipher.decrypt,
        registry=registry,
        post_log=post_log,
        platform_timeout=settings.platform_timeout_seconds,
    )
    await record_activity(session, user_id)
    return PostResponse(
        job_id=job.id,
        status=job.status,
        results={
            platform: PostResultResponse(
                success=result.success,
                post_id=result.post_id,
                url=result.url,
                error=result.error,
            )
            for platform, result in job.results.items()
        },
        created_at=format_iso(job.created_at),
        completed_at=format_iso(job.completed_at) if job.completed_at else None,
    )


@router.get("/posts/history", response_model=PostHistoryResponse)
async def post_history_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user_id: Annotated[str, Depends(require_user_id)],
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> PostHistoryResponse:
    """Return the user's posting history, newest first."""
    rows = await get_post_history(session, user_id, limit)
    return PostHistoryResponse(
        items=[
            PostHistoryEntry(
                id=row.id,
                platform=row.platform,
                post_id=row.post_id,
                success=row.success,
                content_length=row.content_length,
                has_images=row.has_images,
                error_message=row.error_message,
                created_at=row.created_at,
            )
            for row in rows
        ]
    )
