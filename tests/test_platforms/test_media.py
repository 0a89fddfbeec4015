"""Tests for image decoding, compression and platform media uploads."""

from __future__ import annotations

import base64
import hashlib
import io
import json

import httpx
import pytest
from PIL import Image

from fanout.platforms.media import (
    BLUESKY_MAX_BLOB_BYTES,
    ImagePayload,
    MediaError,
    OAuth1Keys,
    compress_image,
    create_blossom_auth_event,
    decode_image,
    image_dimensions,
    strip_metadata,
    upload_to_blossom,
    upload_to_bluesky,
    upload_to_mastodon,
    upload_to_twitter,
)
from fanout.platforms.nostr_event import LocalKeySigner, verify_event
from tests.conftest import NOSTR_PRIVATE_KEY, NOSTR_PUBLIC_KEY, make_data_url, make_image_bytes


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestDecodeImage:
    def test_data_url(self) -> None:
        data = make_image_bytes()
        image = decode_image(make_data_url(data))
        assert image.data == data
        assert image.mime_type == "image/png"

    def test_raw_bytes_sniffed(self) -> None:
        image = decode_image(make_image_bytes(fmt="JPEG"))
        assert image.mime_type == "image/jpeg"

    @pytest.mark.parametrize("payload", ["not a data url", "data:image/png;base64,"])
    def test_invalid_payload(self, payload: str) -> None:
        with pytest.raises(MediaError):
            decode_image(payload)

    def test_dimensions(self) -> None:
        assert image_dimensions(decode_image(make_image_bytes(40, 30))) == (40, 30)
        assert image_dimensions(ImagePayload(b"garbage", "image/png")) is None


class TestCompression:
    def test_small_image_returned_unchanged(self) -> None:
        image = ImagePayload(make_image_bytes(), "image/png")
        assert compress_image(image) is image

    def test_large_image_fits_bluesky_limit(self) -> None:
        data = make_image_bytes(700, 700, noise=True)
        assert len(data) > BLUESKY_MAX_BLOB_BYTES
        result = compress_image(ImagePayload(data, "image/png"))
        assert result.mime_type == "image/jpeg"
        assert result.size <= BLUESKY_MAX_BLOB_BYTES

    def test_longest_edge_capped(self) -> None:
        data = make_image_bytes(3000, 1500)
        result = compress_image(ImagePayload(data, "image/png"), max_bytes=100)
        width, height = image_dimensions(result) or (0, 0)
        assert max(width, height) <= 1920
        assert width == 2 * height

    def test_undecodable_oversized_image_raises(self) -> None:
        with pytest.raises(MediaError):
            compress_image(ImagePayload(b"x" * 100, "image/png"), max_bytes=10)


class TestStripMetadata:
    def test_exif_removed(self) -> None:
        img = Image.new("RGB", (16, 16), color=(1, 2, 3))
        exif = Image.Exif()
        exif[0x010F] = "SecretCamera"
        buf = io.BytesIO()
        img.save(buf, format="JPEG", exif=exif)
        assert b"SecretCamera" in buf.getvalue()

        stripped = strip_metadata(ImagePayload(buf.getvalue(), "image/jpeg"))
        assert b"SecretCamera" not in stripped.data
        assert stripped.mime_type == "image/jpeg"

    def test_transparent_png_converted(self) -> None:
        img = Image.new("RGBA", (8, 8), color=(0, 0, 0, 0))
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        stripped = strip_metadata(ImagePayload(buf.getvalue(), "image/png"))
        assert image_dimensions(stripped) == (8, 8)


class TestMastodonUpload:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, json={"id": "m1"})

        async with _client(handler) as client:
            result = await upload_to_mastodon(
                client, "https://mastodon.example", "tok", make_data_url(make_image_bytes())
            )
        assert result.success and result.media_id == "m1"
        assert str(seen[0].url) == "https://mastodon.example/api/v2/media"
        assert seen[0].headers["Authorization"] == "Bearer tok"
        assert b'name="file"' in seen[0].content

    @pytest.mark.asyncio
    async def test_http_failure_reported(self) -> None:
        async with _client(lambda r: httpx.Response(500)) as client:
            result = await upload_to_mastodon(
                client, "https://mastodon.example", "tok", make_data_url(make_image_bytes())
            )
        assert result.success is False
        assert "500" in (result.error or "")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>proxy error</html>"),
            httpx.Response(200, json=["m1"]),
        ],
    )
    async def test_malformed_body_reported(self, response: httpx.Response) -> None:
        async with _client(lambda r: response) as client:
            result = await upload_to_mastodon(
                client, "https://mastodon.example", "tok", make_data_url(make_image_bytes())
            )
        assert result.success is False
        assert result.error == "Mastodon media upload returned an invalid response"


class TestBlueskyUpload:
    @pytest.mark.asyncio
    async def test_raw_bytes_with_content_type(self) -> None:
        data = make_image_bytes(20, 10)
        blob = {"$type": "blob", "ref": {"$link": "bafy"}, "mimeType": "image/png", "size": 1}

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/xrpc/com.atproto.repo.uploadBlob"
            assert request.headers["Content-Type"] == "image/png"
            assert request.content == data
            return httpx.Response(200, json={"blob": blob})

        async with _client(handler) as client:
            result = await upload_to_bluesky(client, "https://pds.example", "jwt", make_data_url(data))
        assert result.success
        assert result.blob == blob
        assert (result.width, result.height) == (20, 10)

    @pytest.mark.asyncio
    async def test_oversized_image_compressed_before_upload(self) -> None:
        sizes: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            sizes.append(len(request.content))
            assert request.headers["Content-Type"] == "image/jpeg"
            return httpx.Response(200, json={"blob": {"$type": "blob"}})

        data = make_image_bytes(700, 700, noise=True)
        async with _client(handler) as client:
            result = await upload_to_bluesky(client, "https://pds.example", "jwt", make_data_url(data))
        assert result.success
        assert sizes[0] <= BLUESKY_MAX_BLOB_BYTES

    @pytest.mark.asyncio
    async def test_non_json_body_reported(self) -> None:
        async with _client(lambda r: httpx.Response(200, text="<html>gateway</html>")) as client:
            result = await upload_to_bluesky(
                client, "https://pds.example", "jwt", make_data_url(make_image_bytes())
            )
        assert result.success is False
        assert result.error == "Bluesky image upload returned an invalid response"


class TestTwitterUpload:
    @pytest.mark.asyncio
    async def test_oauth1_preferred(self) -> None:
        auth_headers: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            auth_headers.append(request.headers["Authorization"])
            return httpx.Response(200, json={"media_id_string": "777"})

        async with _client(handler) as client:
            result = await upload_to_twitter(
                client,
                make_data_url(make_image_bytes()),
                oauth=OAuth1Keys("ck", "cs", "t", "ts"),
                bearer_token="bearer",
            )
        assert result.media_id == "777"
        assert len(auth_headers) == 1
        assert auth_headers[0].startswith("OAuth ")

    @pytest.mark.asyncio
    async def test_bearer_fallback_after_oauth1_failure(self) -> None:
        auth_headers: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            auth_headers.append(request.headers["Authorization"])
            if request.headers["Authorization"].startswith("OAuth "):
                return httpx.Response(401, json={"errors": [{"message": "bad"}]})
            return httpx.Response(200, json={"media_id_string": "888"})

        async with _client(handler) as client:
            result = await upload_to_twitter(
                client,
                make_data_url(make_image_bytes()),
                oauth=OAuth1Keys("ck", "cs", "t", "ts"),
                bearer_token="bearer",
            )
        assert result.media_id == "888"
        assert auth_headers[1] == "Bearer bearer"

    @pytest.mark.asyncio
    async def test_no_credentials(self) -> None:
        async with _client(lambda r: httpx.Response(200)) as client:
            result = await upload_to_twitter(client, make_data_url(make_image_bytes()))
        assert result.success is False

    @pytest.mark.asyncio
    async def test_non_json_body_tries_next_credential(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers["Authorization"].startswith("OAuth "):
                return httpx.Response(200, text="<html>oops</html>")
            return httpx.Response(200, json={"media_id_string": "999"})

        async with _client(handler) as client:
            result = await upload_to_twitter(
                client,
                make_data_url(make_image_bytes()),
                oauth=OAuth1Keys("ck", "cs", "t", "ts"),
                bearer_token="bearer",
            )
        assert result.media_id == "999"

    @pytest.mark.asyncio
    async def test_json_list_body_reported(self) -> None:
        async with _client(lambda r: httpx.Response(200, json=[1, 2])) as client:
            result = await upload_to_twitter(
                client, make_data_url(make_image_bytes()), bearer_token="bearer"
            )
        assert result.success is False
        assert result.error == "X media upload returned no media_id_string"


class TestBlossom:
    @pytest.mark.asyncio
    async def test_auth_event_shape(self) -> None:
        signer = LocalKeySigner(NOSTR_PRIVATE_KEY)
        event = await create_blossom_auth_event(signer, "ab" * 32, now=1700000000)
        assert event["kind"] == 24242
        assert event["pubkey"] == NOSTR_PUBLIC_KEY
        assert event["content"] == "Upload image to Blossom server"
        assert event["tags"] == [
            ["t", "upload"],
            ["x", "ab" * 32],
            ["expiration", "1700003600"],
        ]
        assert verify_event(event)

    @pytest.mark.asyncio
    async def test_upload_put_with_nostr_authorization(self) -> None:
        captured: dict[str, object] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["method"] = request.method
            captured["url"] = str(request.url)
            captured["body"] = request.content
            captured["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"download_url": "https://blossom.example/abc.jpg"})

        signer = LocalKeySigner(NOSTR_PRIVATE_KEY)
        async with _client(handler) as client:
            result = await upload_to_blossom(
                client, "https://blossom.example/", signer, make_data_url(make_image_bytes())
            )

        assert result.success
        assert result.url == "https://blossom.example/abc.jpg"
        assert captured["method"] == "PUT"
        assert captured["url"] == "https://blossom.example/upload"
        auth = str(captured["auth"])
        assert auth.startswith("Nostr ")
        event = json.loads(base64.b64decode(auth.removeprefix("Nostr ")))
        body_hash = hashlib.sha256(captured["body"]).hexdigest()  # type: ignore[arg-type]
        assert ["x", body_hash] in event["tags"]
        assert verify_event(event)

    @pytest.mark.asyncio
    async def test_response_without_url_fails(self) -> None:
        signer = LocalKeySigner(NOSTR_PRIVATE_KEY)
        async with _client(lambda r: httpx.Response(200, json={})) as client:
            result = await upload_to_blossom(
                client, "https://blossom.example", signer, make_data_url(make_image_bytes())
            )
        assert result.success is False

    @pytest.mark.asyncio
    async def test_non_json_body_fails(self) -> None:
        signer = LocalKeySigner(NOSTR_PRIVATE_KEY)
        async with _client(lambda r: httpx.Response(201, text="stored")) as client:
            result = await upload_to_blossom(
                client, "https://blossom.example", signer, make_data_url(make_image_bytes())
            )
        assert result.success is False
        assert result.error == "Blossom upload returned an invalid response"
