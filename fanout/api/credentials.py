"""Platform credential endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.api.deps import get_cipher, get_registry, get_session, require_user_id
from fanout.exceptions import InternalServerError, UnsupportedPlatformError
from fanout.platforms.registry import PlatformRegistry
from fanout.schemas.credential import (
    ConnectionTestResponse,
    CredentialResponse,
    CredentialTestRequest,
    CredentialUpdate,
)
from fanout.services.account_service import record_activity
from fanout.services.credential_service import (
    delete_credentials,
    get_credential,
    list_credentials,
    save_credentials,
)
from fanout.services.crypto_service import CredentialCipher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credentials", tags=["credentials"])


def _require_platform(registry: PlatformRegistry, platform: str) -> None:
    if platform not in registry:
        raise UnsupportedPlatformError([platform])


@router.get("", response_model=list[CredentialResponse])
async def list_credentials_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user_id: Annotated[str, Depends(require_user_id)],
) -> list[CredentialResponse]:
    """List the platforms the user has stored credentials for."""
    rows = await list_credentials(session, user_id)
    return [
        CredentialResponse(platform=row.platform, created_at=row.created_at, updated_at=row.updated_at)
        for row in rows
    ]


@router.put("/{platform}", response_model=CredentialResponse)
async def save_credentials_endpoint(
    platform: str,
    body: CredentialUpdate,
    session: Annotated[AsyncSession, Depends(get_session)],
    registry: Annotated[PlatformRegistry, Depends(get_registry)],
    cipher: Annotated[CredentialCipher, Depends(get_cipher)],
    user_id: Annotated[str, Depends(require_user_id)],
) -> CredentialResponse:
    """Store (or replace) the user's credentials for a platform."""
    _require_platform(registry, platform)
    row = await save_credentials(session, user_id, platform, body.credentials, cipher)
    response = CredentialResponse(
        platform=row.platform, created_at=row.created_at, updated_at=row.updated_at
    )
    await record_activity(session, user_id)
    return response


@router.delete("/{platform}", status_code=204)
async def delete_credentials_endpoint(
    platform: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    user_id: Annotated[str, Depends(require_user_id)],
) -> None:
    """Delete the user's credentials for a platform."""
    deleted = await delete_credentials(session, user_id, platform)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No credentials stored for this platform",
        )


@router.post("/test", response_model=ConnectionTestResponse)
async def test_credentials_endpoint(
    body: CredentialTestRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    registry: Annotated[PlatformRegistry, Depends(get_registry)],
    cipher: Annotated[CredentialCipher, Depends(get_cipher)],
    user_id: Annotated[str, Depends(require_user_id)],
) -> ConnectionTestResponse:
    """Check credentials against the platform without posting anything.

    Uses the credentials in the request body, or the stored ones when omitted.
    """
    adapter = registry.get(body.platform)
    if adapter is None:
        raise UnsupportedPlatformError([body.platform])

    credentials = body.credentials
    if credentials is None:
        stored = await get_credential(session, user_id, body.platform)
        if stored is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No credentials found for platform: {body.platform}",
            )
        try:
            credentials = cipher.decrypt_json(stored.credentials)
        except ValueError as exc:
            msg = f"Stored {body.platform} credentials for user {user_id} cannot be decrypted"
            raise InternalServerError(msg) from exc

    result = await adapter.test_connection(credentials)
    logger.info("Connection test for %s: success=%s", body.platform, result.success)
    return ConnectionTestResponse(success=result.success, message=result.message, data=result.data)
