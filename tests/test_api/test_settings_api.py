"""Tests for the relay settings endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from fanout.services.settings_service import DEFAULT_RELAY_SETTINGS
from tests.conftest import auth_headers, create_test_client

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from httpx import AsyncClient

    from fanout.config import Settings

ALICE = auth_headers("alice")
BOB = auth_headers("bob")


@pytest.fixture
async def client(test_settings: Settings) -> AsyncGenerator[AsyncClient]:
    async with create_test_client(test_settings) as ac:
        yield ac


class TestRelaySettingsApi:
    @pytest.mark.asyncio
    async def test_defaults(self, client: AsyncClient) -> None:
        resp = await client.get("/api/settings/relays", headers=ALICE)
        assert resp.status_code == 200
        assert [r["url"] for r in resp.json()["relays"]] == [
            r.url for r in DEFAULT_RELAY_SETTINGS
        ]

    @pytest.mark.asyncio
    async def test_replace(self, client: AsyncClient) -> None:
        resp = await client.put(
            "/api/settings/relays",
            json={"relays": [{"url": "wss://mine.example/", "read": False}]},
            headers=ALICE,
        )
        assert resp.status_code == 200
        expected = {"relays": [{"url": "wss://mine.example", "read": False, "write": True}]}
        assert resp.json() == expected
        assert (await client.get("/api/settings/relays", headers=ALICE)).json() == expected

    @pytest.mark.asyncio
    async def test_invalid_url(self, client: AsyncClient) -> None:
        resp = await client.put(
            "/api/settings/relays",
            json={"relays": [{"url": "https://not-a-relay.example"}]},
            headers=ALICE,
        )
        assert resp.status_code == 422
        assert "Invalid relay URL" in resp.json()["detail"]


class TestAutoDeleteApi:
    @pytest.mark.asyncio
    async def test_disabled_by_default(self, client: AsyncClient) -> None:
        resp = await client.get("/api/settings/auto-delete", headers=ALICE)
        assert resp.status_code == 200
        assert resp.json()["enabled"] is False

    @pytest.mark.asyncio
    async def test_enable_persists(self, client: AsyncClient) -> None:
        resp = await client.put("/api/settings/auto-delete", json={"enabled": True}, headers=ALICE)
        assert resp.status_code == 200
        assert resp.json()["enabled"] is True
        loaded = (await client.get("/api/settings/auto-delete", headers=ALICE)).json()
        assert loaded == resp.json()
        other = (await client.get("/api/settings/auto-delete", headers=BOB)).json()
        assert other["enabled"] is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["yes", 1, None])
    async def test_non_boolean_rejected(self, client: AsyncClient, value: object) -> None:
        resp = await client.put("/api/settings/auto-delete", json={"enabled": value}, headers=ALICE)
        assert resp.status_code == 422
        assert resp.json()["detail"][0]["field"] == "enabled"


class TestDeleteAllApi:
    @pytest.mark.asyncio
    async def test_removes_credentials_relays_and_settings(self, client: AsyncClient) -> None:
        await client.put(
            "/api/credentials/nostr", json={"credentials": {"pubkey": "a" * 64}}, headers=ALICE
        )
        await client.put(
            "/api/settings/relays", json={"relays": [{"url": "wss://mine.example"}]}, headers=ALICE
        )
        await client.put("/api/settings/auto-delete", json={"enabled": True}, headers=ALICE)
        await client.put(
            "/api/credentials/nostr", json={"credentials": {"pubkey": "b" * 64}}, headers=BOB
        )

        resp = await client.delete("/api/settings/delete-all", headers=ALICE)

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "All account data has been permanently deleted"
        assert body["deleted"]["credentials"] == 1
        assert body["deleted"]["relays"] == 1
        assert body["deleted"]["settings"] == 1
        assert (await client.get("/api/credentials", headers=ALICE)).json() == []
        relays = (await client.get("/api/settings/relays", headers=ALICE)).json()["relays"]
        assert [r["url"] for r in relays] == [r.url for r in DEFAULT_RELAY_SETTINGS]
        assert (await client.get("/api/settings/auto-delete", headers=ALICE)).json()["enabled"] is False
        assert len((await client.get("/api/credentials", headers=BOB)).json()) == 1

    @pytest.mark.asyncio
    async def test_nothing_stored(self, client: AsyncClient) -> None:
        resp = await client.delete("/api/settings/delete-all", headers=ALICE)
        assert resp.status_code == 200
        assert resp.json()["deleted"] == {
            "credentials": 0,
            "relays": 0,
            "post_logs": 0,
            "settings": 0,
        }
