"""Tests for per-user relay settings."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from fanout.services.settings_service import (
    DEFAULT_RELAY_SETTINGS,
    RelaySetting,
    get_relays,
    get_write_relay_urls,
    set_relays,
    validate_relay_url,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class TestValidateRelayUrl:
    def test_strips_trailing_slash(self) -> None:
        assert validate_relay_url(" wss://relay.example/ ") == "wss://relay.example"

    @pytest.mark.parametrize("url", ["https://relay.example", "relay.example", "wss://", ""])
    def test_rejects(self, url: str) -> None:
        with pytest.raises(ValueError, match="Invalid relay URL"):
            validate_relay_url(url)


class TestRelaySettings:
    @pytest.mark.asyncio
    async def test_defaults_when_unset(self, db_session: AsyncSession) -> None:
        assert await get_relays(db_session, "alice") == list(DEFAULT_RELAY_SETTINGS)
        assert await get_write_relay_urls(db_session, "alice") is None

    @pytest.mark.asyncio
    async def test_set_replaces_and_keeps_order(self, db_session: AsyncSession) -> None:
        await set_relays(db_session, "alice", [RelaySetting("wss://old.example")])
        saved = await set_relays(
            db_session,
            "alice",
            [
                RelaySetting("wss://b.example/"),
                RelaySetting("wss://a.example", read=True, write=False),
            ],
        )
        assert [r.url for r in saved] == ["wss://b.example", "wss://a.example"]
        assert await get_relays(db_session, "alice") == saved
        assert await get_write_relay_urls(db_session, "alice") == ["wss://b.example"]

    @pytest.mark.asyncio
    async def test_users_isolated(self, db_session: AsyncSession) -> None:
        await set_relays(db_session, "alice", [RelaySetting("wss://a.example")])
        assert await get_write_relay_urls(db_session, "bob") is None

    @pytest.mark.asyncio
    async def test_duplicates_rejected(self, db_session: AsyncSession) -> None:
        with pytest.raises(ValueError, match="Duplicate relay URL"):
            await set_relays(
                db_session,
                "alice",
                [RelaySetting("wss://a.example"), RelaySetting("wss://a.example/")],
            )

    @pytest.mark.asyncio
    async def test_invalid_rejected_before_writing(self, db_session: AsyncSession) -> None:
        await set_relays(db_session, "alice", [RelaySetting("wss://keep.example")])
        with pytest.raises(ValueError):
            await set_relays(db_session, "alice", [RelaySetting("http://nope.example")])
        assert await get_write_relay_urls(db_session, "alice") == ["wss://keep.example"]

    @pytest.mark.asyncio
    async def test_empty_list_clears(self, db_session: AsyncSession) -> None:
        await set_relays(db_session, "alice", [RelaySetting("wss://a.example")])
        assert await set_relays(db_session, "alice", []) == []
        assert await get_write_relay_urls(db_session, "alice") is None
