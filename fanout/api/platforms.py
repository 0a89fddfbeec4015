"""Supported platforms."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from fanout.api.deps import get_registry
from fanout.platforms.registry import PlatformRegistry
from fanout.schemas.credential import PlatformResponse

router = APIRouter(prefix="/api/platforms", tags=["platforms"])


@router.get("", response_model=list[PlatformResponse])
async def list_platforms_endpoint(
    registry: Annotated[PlatformRegistry, Depends(get_registry)],
) -> list[PlatformResponse]:
    """List the platforms posts can be sent to."""
    return [
        PlatformResponse(
            id=platform.id,
            name=platform.name,
            requires_auth=platform.requires_auth,
            connection_test_path=platform.connection_test_path,
            supports_media=platform.supports_media,
        )
        for platform in registry.list_platforms()
    ]
