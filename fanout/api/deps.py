"""Shared API dependencies: settings, DB session, auth, registry."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.config import Settings
from fanout.platforms.registry import PlatformRegistry
from fanout.services.auth_service import user_id_from_token
from fanout.services.crypto_service import CredentialCipher
from fanout.services.post_log_service import PostLogSink

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_registry(request: Request) -> PlatformRegistry:
    registry: PlatformRegistry = request.app.state.registry
    return registry


def get_post_log(request: Request) -> PostLogSink:
    sink: PostLogSink = request.app.state.post_log
    return sink


def get_cipher(settings: Annotated[Settings, Depends(get_settings)]) -> CredentialCipher:
    return CredentialCipher(settings.secret_key)


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


async def require_user_id(
    settings: Annotated[Settings, Depends(get_settings)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
) -> str:
    """Return the user id of the bearer token. Raises 401 if missing or invalid."""
    user_id = None
    if credentials is not None:
        user_id = user_id_from_token(credentials.credentials, settings.secret_key)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
