"""User settings endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fanout.api.deps import get_session, require_user_id
from fanout.schemas.settings import (
    AutoDeleteResponse,
    AutoDeleteUpdate,
    DeleteAllResponse,
    RelayItem,
    RelaysResponse,
    RelaysUpdate,
)
from fanout.services.account_service import (
    AutoDeleteSetting,
    delete_all_user_data,
    get_auto_delete,
    set_auto_delete,
)
from fanout.services.datetime_service import format_iso
from fanout.services.settings_service import RelaySetting, get_relays, set_relays

router = APIRouter(prefix="/api/settings", tags=["settings"])


def _to_response(relays: list[RelaySetting]) -> RelaysResponse:
    return RelaysResponse(
        relays=[RelayItem(url=r.url, read=r.read, write=r.write) for r in relays]
    )


def _auto_delete_response(setting: AutoDeleteSetting) -> AutoDeleteResponse:
    return AutoDeleteResponse(
        enabled=setting.enabled,
        last_activity=format_iso(setting.last_activity),
    )


@router.get("/relays", response_model=RelaysResponse)
async def get_relays_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user_id: Annotated[str, Depends(require_user_id)],
) -> RelaysResponse:
    """Return the user's Nostr relays (defaults when none are saved)."""
    return _to_response(await get_relays(session, user_id))


@router.put("/relays", response_model=RelaysResponse)
async def set_relays_endpoint(
    body: RelaysUpdate,
    session: Annotated[AsyncSession, Depends(get_session)],
    user_id: Annotated[str, Depends(require_user_id)],
) -> RelaysResponse:
    """Replace the user's Nostr relay list."""
    saved = await set_relays(
        session,
        user_id,
        [RelaySetting(r.url, r.read, r.write) for r in body.relays],
    )
    return _to_response(saved)


@router.get("/auto-delete", response_model=AutoDeleteResponse)
async def get_auto_delete_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user_id: Annotated[str, Depends(require_user_id)],
) -> AutoDeleteResponse:
    return _auto_delete_response(await get_auto_delete(session, user_id))


@router.put("/auto-delete", response_model=AutoDeleteResponse)
async def set_auto_delete_endpoint(
    body: AutoDeleteUpdate,
    session: Annotated[AsyncSession, Depends(get_session)],
    user_id: Annotated[str, Depends(require_user_id)],
) -> AutoDeleteResponse:
    """Turn deletion of the account after a period of inactivity on or off."""
    return _auto_delete_response(await set_auto_delete(session, user_id, body.enabled))


@router.delete("/delete-all", response_model=DeleteAllResponse)
async def delete_all_endpoint(
    session: Annotated[AsyncSession, Depends(get_session)],
    user_id: Annotated[str, Depends(require_user_id)],
) -> DeleteAllResponse:
    """Permanently delete the user's credentials, relays, history and settings."""
    deleted = await delete_all_user_data(session, user_id)
    return DeleteAllResponse(
        success=True,
        message="All account data has been permanently deleted",
        deleted={
            "credentials": deleted.credentials,
            "relays": deleted.relays,
            "post_logs": deleted.post_logs,
            "settings": deleted.settings,
        },
    )
