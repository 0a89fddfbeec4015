"""Posting dispatcher: fan one post out to many platforms.

Each requested platform is attempted concurrently and in isolation. A missing
credential, an undecryptable credential bag, an adapter exception or a timeout
on one platform becomes that platform's failed ``PostResult``; it never affects
the others. Only request-level problems (empty text, no platforms, unknown
platform ids) raise, and they raise before any network activity.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from fanout.exceptions import PostValidationError, UnsupportedPlatformError
from fanout.platforms.base import PostResult
from fanout.services.datetime_service import now_utc
from fanout.services.post_log_service import PostLogRecord

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from fanout.platforms.base import PostContent
    from fanout.platforms.registry import PlatformRegistry
    from fanout.services.credential_service import CredentialStore, StoredCredential
    from fanout.services.post_log_service import PostLogSink

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM_TIMEOUT = 60.0

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"


@dataclass
class PostJob:
    """A post request and its per-platform outcome."""

    user_id: str
    content: PostContent
    platforms: list[str]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: str = JOB_PENDING
    results: dict[str, PostResult] = field(default_factory=dict)
    created_at: datetime = field(default_factory=now_utc)
    completed_at: datetime | None = None

    @property
    def succeeded(self) -> list[str]:
        return [p for p, r in self.results.items() if r.success]

    @property
    def failed(self) -> list[str]:
        return [p for p, r in self.results.items() if not r.success]


def _validate_request(
    content: PostContent,
    platforms: Sequence[str],
    registry: PlatformRegistry,
) -> list[str]:
    """Return the de-duplicated platform list, or raise for request-level errors."""
    if not content.text.strip():
        msg = "Message is required"
        raise PostValidationError(msg)
    requested = list(dict.fromkeys(platforms))
    if not requested:
        msg = "At least one platform must be selected"
        raise PostValidationError(msg)
    unsupported = [p for p in requested if p not in registry]
    if unsupported:
        raise UnsupportedPlatformError(unsupported)
    return requested


def _load_credentials(
    stored: StoredCredential,
    decrypt: Callable[[str], str],
) -> dict[str, Any]:
    data = json.loads(decrypt(stored.credentials_ciphertext))
    if not isinstance(data, dict):
        msg = "Credential data is not a JSON object"
        raise ValueError(msg)
    return data


async def _attempt_platform(
    platform_id: str,
    content: PostContent,
    stored: StoredCredential | None,
    decrypt: Callable[[str], str],
    registry: PlatformRegistry,
    platform_timeout: float,
) -> PostResult:
    adapter = registry.get(platform_id)
    if adapter is None:
        return PostResult.failed(f"Unsupported platform: {platform_id}")
    if stored is None:
        return PostResult.failed(f"No credentials found for platform: {platform_id}")

    try:
        credentials = _load_credentials(stored, decrypt)
    except Exception as exc:
        logger.warning(
            "Could not decrypt stored credentials for %s: %s", platform_id, type(exc).__name__
        )
        return PostResult.failed(f"Failed to decrypt credentials for platform: {platform_id}")

    try:
        async with asyncio.timeout(platform_timeout):
            return await adapter.post(content, credentials)
    except TimeoutError:
        logger.warning("Posting to %s timed out after %.1fs", platform_id, platform_timeout)
        return PostResult.failed(
            f"{adapter.platform.name} timed out after {platform_timeout:g} seconds"
        )
    except Exception as exc:
        logger.exception("Posting to %s failed", platform_id)
        return PostResult.failed(str(exc) or type(exc).__name__)


def _emit_log(
    post_log: PostLogSink | None,
    user_id: str,
    content: PostContent,
    results: Mapping[str, PostResult],
) -> None:
    if post_log is None:
        return
    for platform_id, result in results.items():
        record = PostLogRecord(
            user_id=user_id,
            platform=platform_id,
            success=result.success,
            post_id=result.post_id,
            text_length=len(content.text),
            has_images=content.has_images,
            error=result.error,
        )
        try:
            post_log.record_post(record)
        except Exception:
            logger.exception("Post log sink rejected %s record", platform_id)


async def create_and_process_post(
    user_id: str,
    content: PostContent,
    platforms: Sequence[str],
    *,
    credential_store: CredentialStore,
    decrypt: Callable[[str], str],
    registry: PlatformRegistry,
    post_log: PostLogSink | None = None,
    platform_timeout: float = DEFAULT_PLATFORM_TIMEOUT,
) -> dict[str, PostResult]:
    """Post ``content`` to every platform in ``platforms``.

    Returns one ``PostResult`` per requested platform, keyed in request order.
    Raises PostValidationError or UnsupportedPlatformError before any platform
    is attempted.
    """
    requested = _validate_request(content, platforms, registry)

    stored = await credential_store.get_credentials(user_id)
    by_platform = {s.platform: s for s in stored}

    logger.info("Posting for user %s to %s", user_id, ", ".join(requested))
    outcomes = await asyncio.gather(
        *(
            _attempt_platform(
                platform_id,
                content,
                by_platform.get(platform_id),
                decrypt,
                registry,
                platform_timeout,
            )
            for platform_id in requested
        )
    )
    results = dict(zip(requested, outcomes, strict=True))

    for platform_id, result in results.items():
        if result.success:
            logger.info("Posted to %s: %s", platform_id, result.post_id)
        else:
            logger.warning("Posting to %s failed: %s", platform_id, result.error)

    _emit_log(post_log, user_id, content, results)
    return results


async def run_post_job(
    user_id: str,
    content: PostContent,
    platforms: Sequence[str],
    **dispatch_kwargs: Any,
) -> PostJob:
    """Run a post as a :class:`PostJob`; ``completed`` only if every platform succeeded."""
    job = PostJob(user_id=user_id, content=content, platforms=list(platforms))
    job.status = JOB_PROCESSING
    job.results = await create_and_process_post(user_id, content, platforms, **dispatch_kwargs)
    job.platforms = list(job.results)
    job.status = JOB_COMPLETED if all(r.success for r in job.results.values()) else JOB_FAILED
    job.completed_at = now_utc()
    return job
