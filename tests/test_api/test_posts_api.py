"""Tests for the posting and history endpoints."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest

from fanout.platforms.base import Platform, PostContent, PostResult, TestResult
from fanout.platforms.registry import PlatformRegistry
from tests.conftest import auth_headers, create_test_client, make_data_url, make_image_bytes

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Mapping

    from httpx import AsyncClient

    from fanout.config import Settings

ALICE = auth_headers("alice")


class RecordingAdapter:
    def __init__(self, platform_id: str, result: PostResult | None = None) -> None:
        self.platform = Platform(id=platform_id, name=platform_id.title())
        self.result = result or PostResult(
            success=True, post_id=f"{platform_id}-1", url=f"https://{platform_id}.example/1"
        )
        self.posts: list[tuple[PostContent, Mapping[str, Any]]] = []

    async def test_connection(self, credentials: Mapping[str, Any]) -> TestResult:
        return TestResult(success=True, message="ok")

    async def post(self, content: PostContent, credentials: Mapping[str, Any]) -> PostResult:
        self.posts.append((content, credentials))
        return self.result


@pytest.fixture
def adapters() -> dict[str, RecordingAdapter]:
    return {
        "mastodon": RecordingAdapter("mastodon"),
        "nostr": RecordingAdapter("nostr"),
        "twitter": RecordingAdapter(
            "twitter", PostResult.failed("X API error: HTTP 429 Too Many Requests")
        ),
    }


@pytest.fixture
async def client(
    test_settings: Settings, adapters: dict[str, RecordingAdapter]
) -> AsyncGenerator[AsyncClient]:
    registry = PlatformRegistry()
    for adapter in adapters.values():
        registry.register(adapter)
    async with create_test_client(test_settings, registry) as ac:
        for platform in adapters:
            resp = await ac.put(
                f"/api/credentials/{platform}",
                json={"credentials": {"token": f"{platform}-secret"}},
                headers=ALICE,
            )
            assert resp.status_code == 200
        yield ac


async def _history(client: AsyncClient, expected: int) -> list[dict[str, Any]]:
    """Poll until the background writer has stored ``expected`` rows."""
    items: list[dict[str, Any]] = []
    for _ in range(100):
        resp = await client.get("/api/posts/history", headers=ALICE)
        items = resp.json()["items"]
        if len(items) >= expected:
            break
        await asyncio.sleep(0.01)
    return items


class TestCreatePost:
    @pytest.mark.asyncio
    async def test_partial_success(
        self, client: AsyncClient, adapters: dict[str, RecordingAdapter]
    ) -> None:
        resp = await client.post(
            "/api/post",
            json={"message": "hello world", "platforms": ["mastodon", "twitter"]},
            headers=ALICE,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "failed"
        assert list(body["results"]) == ["mastodon", "twitter"]
        assert body["results"]["mastodon"] == {
            "success": True,
            "post_id": "mastodon-1",
            "url": "https://mastodon.example/1",
            "error": None,
        }
        assert body["results"]["twitter"]["error"] == "X API error: HTTP 429 Too Many Requests"
        assert body["completed_at"] is not None
        content, credentials = adapters["mastodon"].posts[0]
        assert content.text == "hello world"
        assert credentials == {"token": "mastodon-secret"}
        assert adapters["nostr"].posts == []

    @pytest.mark.asyncio
    async def test_all_succeed(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/post",
            json={"message": "hi", "platforms": ["mastodon", "nostr"]},
            headers=ALICE,
        )
        assert resp.json()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_missing_credentials_is_per_platform(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/post",
            json={"message": "hi", "platforms": ["mastodon"]},
            headers=auth_headers("bob"),
        )
        assert resp.status_code == 200
        assert resp.json()["results"]["mastodon"]["error"] == (
            "No credentials found for platform: mastodon"
        )

    @pytest.mark.asyncio
    async def test_saved_write_relays_passed_to_adapters(
        self, client: AsyncClient, adapters: dict[str, RecordingAdapter]
    ) -> None:
        await client.put(
            "/api/settings/relays",
            json={
                "relays": [
                    {"url": "wss://write.example"},
                    {"url": "wss://read.example", "write": False},
                ]
            },
            headers=ALICE,
        )
        await client.post(
            "/api/post", json={"message": "gm", "platforms": ["nostr"]}, headers=ALICE
        )
        content, _ = adapters["nostr"].posts[0]
        assert content.metadata == {"relays": ["wss://write.example"]}

    @pytest.mark.asyncio
    async def test_images_forwarded(
        self, client: AsyncClient, adapters: dict[str, RecordingAdapter]
    ) -> None:
        image = make_data_url(make_image_bytes())
        resp = await client.post(
            "/api/post",
            json={"message": "pic", "platforms": ["mastodon"], "images": [image]},
            headers=ALICE,
        )
        assert resp.status_code == 200
        assert adapters["mastodon"].posts[0][0].images == (image,)


class TestRejectedPosts:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("payload", "detail"),
        [
            ({"message": "  ", "platforms": ["mastodon"]}, "Message is required"),
            ({"message": "hi", "platforms": []}, "At least one platform must be selected"),
            (
                {"message": "hi", "platforms": ["mastodon", "myspace"]},
                "Unsupported platforms: myspace",
            ),
        ],
    )
    async def test_400(
        self,
        client: AsyncClient,
        adapters: dict[str, RecordingAdapter],
        payload: dict[str, Any],
        detail: str,
    ) -> None:
        resp = await client.post("/api/post", json=payload, headers=ALICE)
        assert resp.status_code == 400
        assert resp.json()["detail"] == detail
        assert adapters["mastodon"].posts == []

    @pytest.mark.asyncio
    async def test_too_many_images(self, client: AsyncClient) -> None:
        image = make_data_url(make_image_bytes())
        resp = await client.post(
            "/api/post",
            json={"message": "pics", "platforms": ["mastodon"], "images": [image] * 5},
            headers=ALICE,
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "At most 4 images can be attached"

    @pytest.mark.asyncio
    async def test_missing_fields(self, client: AsyncClient) -> None:
        resp = await client.post("/api/post", json={"message": "hi"}, headers=ALICE)
        assert resp.status_code == 422
        assert resp.json()["detail"][0]["field"] == "platforms"


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_after_post(self, client: AsyncClient) -> None:
        await client.post(
            "/api/post",
            json={"message": "hello", "platforms": ["mastodon", "twitter"]},
            headers=ALICE,
        )
        items = await _history(client, 2)
        assert {i["platform"]: i["success"] for i in items} == {
            "mastodon": True,
            "twitter": False,
        }
        assert all(i["content_length"] == 5 for i in items)

        other = await client.get("/api/posts/history", headers=auth_headers("bob"))
        assert other.json()["items"] == []

    @pytest.mark.asyncio
    async def test_limit_validated(self, client: AsyncClient) -> None:
        resp = await client.get("/api/posts/history?limit=0", headers=ALICE)
        assert resp.status_code == 422
