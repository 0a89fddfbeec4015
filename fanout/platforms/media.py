"""Media uploads shared by the platform adapters.

Images arrive as ``data:<mime>;base64,<payload>`` URLs. Every upload function
returns a :class:`MediaUploadResult` and never raises for HTTP or image errors,
so adapters can skip a failed image and carry on with the rest.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import io
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from PIL import Image, UnidentifiedImageError

from fanout.platforms import oauth1
from fanout.platforms.base import response_json
from fanout.platforms.nostr_event import build_event

if TYPE_CHECKING:
    from fanout.platforms.nostr_event import EventSigner

logger = logging.getLogger(__name__)

BLUESKY_MAX_BLOB_BYTES = 976_560
MAX_DIMENSION = 1920
JPEG_QUALITIES = (85, 70, 55, 40, 30)
STRIP_QUALITY = 90

BLOSSOM_AUTH_KIND = 24242
BLOSSOM_AUTH_TTL_SECONDS = 3600
BLOSSOM_AUTH_CONTENT = "Upload image to Blossom server"

TWITTER_UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,;]+)*?);base64,(?P<data>.*)$", re.S)


class MediaError(ValueError):
    """Raised when an image payload cannot be decoded or re-encoded."""


@dataclass(frozen=True)
class ImagePayload:
    """Decoded image bytes with their MIME type."""

    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


@dataclass(frozen=True)
class MediaUploadResult:
    """Uniform result of a platform media upload."""

    success: bool
    media_id: str | None = None
    url: str | None = None
    blob: dict[str, Any] | None = None
    width: int | None = None
    height: int | None = None
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> MediaUploadResult:
        return cls(success=False, error=error)


@dataclass(frozen=True)
class OAuth1Keys:
    """The four OAuth 1.0a secrets of an X app + user."""

    consumer_key: str
    consumer_secret: str
    token: str
    token_secret: str


def decode_image(payload: str | bytes | ImagePayload) -> ImagePayload:
    """Decode a data URL (or raw bytes) into an :class:`ImagePayload`."""
    if isinstance(payload, ImagePayload):
        return payload
    if isinstance(payload, bytes):
        return ImagePayload(payload, _sniff_mime(payload))

    match = _DATA_URL_RE.match(payload.strip())
    if match is None:
        msg = "Image must be a base64 data URL"
        raise MediaError(msg)
    try:
        data = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError) as exc:
        msg = "Image data is not valid base64"
        raise MediaError(msg) from exc
    if not data:
        msg = "Image data is empty"
        raise MediaError(msg)
    return ImagePayload(data, match.group("mime") or _sniff_mime(data))


def _sniff_mime(data: bytes) -> str:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format or "", "application/octet-stream")
    except (UnidentifiedImageError, OSError):
        return "application/octet-stream"


def image_dimensions(image: ImagePayload) -> tuple[int, int] | None:
    """Return ``(width, height)`` or None when Pillow cannot read the image."""
    try:
        with Image.open(io.BytesIO(image.data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError):
        return None


def _open_rgb(image: ImagePayload) -> Image.Image:
    try:
        with Image.open(io.BytesIO(image.data)) as img:
            img.load()
            if img.mode in ("RGB", "L"):
                return img.copy()
            return img.convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        msg = f"Cannot decode {image.mime_type} image"
        raise MediaError(msg) from exc


def _encode_jpeg(img: Image.Image, quality: int) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def compress_image(
    image: ImagePayload,
    max_bytes: int = BLUESKY_MAX_BLOB_BYTES,
    max_dimension: int = MAX_DIMENSION,
) -> ImagePayload:
    """Re-encode ``image`` as JPEG until it fits in ``max_bytes``.

    Images already within the limit are returned unchanged. Otherwise the
    longest edge is capped at ``max_dimension`` and quality walks down
    ``JPEG_QUALITIES``; the last attempt is returned even if still too large.
    """
    if image.size <= max_bytes:
        return image

    img = _open_rgb(image)
    img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
    data = b""
    for quality in JPEG_QUALITIES:
        data = _encode_jpeg(img, quality)
        logger.debug("Compressed image at quality %d: %d bytes", quality, len(data))
        if len(data) <= max_bytes:
            break
    else:
        logger.warning(
            "Image still %d bytes after compression (limit %d)", len(data), max_bytes
        )
    return ImagePayload(data, "image/jpeg")


def strip_metadata(image: ImagePayload) -> ImagePayload:
    """Drop EXIF and other metadata by re-encoding pixels only as JPEG."""
    img = _open_rgb(image)
    return ImagePayload(_encode_jpeg(img, STRIP_QUALITY), "image/jpeg")


async def upload_to_mastodon(
    client: httpx.AsyncClient,
    instance_url: str,
    access_token: str,
    image_data: str | ImagePayload,
) -> MediaUploadResult:
    """Upload an attachment via ``POST /api/v2/media``."""
    try:
        image = decode_image(image_data)
        resp = await client.post(
            f"{instance_url}/api/v2/media",
            headers={"Authorization": f"Bearer {access_token}"},
            files={"file": ("image", image.data, image.mime_type)},
        )
    except MediaError as exc:
        return MediaUploadResult.failed(str(exc))
    except httpx.HTTPError as exc:
        return MediaUploadResult.failed(f"Mastodon media upload error: {exc}")

    if resp.status_code not in (200, 202):
        return MediaUploadResult.failed(
            f"Mastodon media upload failed: {resp.status_code} {resp.reason_phrase}"
        )
    body = response_json(resp)
    if body is None:
        return MediaUploadResult.failed("Mastodon media upload returned an invalid response")
    media_id = body.get("id")
    if not media_id:
        return MediaUploadResult.failed("Mastodon media upload returned no id")
    return MediaUploadResult(success=True, media_id=str(media_id))


async def upload_to_bluesky(
    client: httpx.AsyncClient,
    service_url: str,
    access_jwt: str,
    image_data: str | ImagePayload,
    max_bytes: int = BLUESKY_MAX_BLOB_BYTES,
) -> MediaUploadResult:
    """Compress if needed and upload a blob via ``com.atproto.repo.uploadBlob``."""
    try:
        image = decode_image(image_data)
        if image.size > max_bytes:
            logger.info("Image is %d bytes, compressing for Bluesky", image.size)
            image = await asyncio.to_thread(compress_image, image, max_bytes)
        dims = image_dimensions(image)
        resp = await client.post(
            f"{service_url}/xrpc/com.atproto.repo.uploadBlob",
            headers={
                "Authorization": f"Bearer {access_jwt}",
                "Content-Type": image.mime_type,
            },
            content=image.data,
        )
    except MediaError as exc:
        return MediaUploadResult.failed(str(exc))
    except httpx.HTTPError as exc:
        return MediaUploadResult.failed(f"Bluesky image upload error: {exc}")

    if resp.status_code != 200:
        return MediaUploadResult.failed(
            f"Bluesky image upload failed: {resp.status_code} {resp.reason_phrase} - {resp.text[:200]}"
        )
    body = response_json(resp)
    if body is None:
        return MediaUploadResult.failed("Bluesky image upload returned an invalid response")
    blob = body.get("blob")
    if not isinstance(blob, dict):
        return MediaUploadResult.failed("Bluesky image upload returned no blob")
    width, height = dims if dims else (None, None)
    return MediaUploadResult(success=True, blob=blob, width=width, height=height)


async def upload_to_twitter(
    client: httpx.AsyncClient,
    image_data: str | ImagePayload,
    *,
    oauth: OAuth1Keys | None = None,
    bearer_token: str | None = None,
) -> MediaUploadResult:
    """Upload via the v1.1 media endpoint, OAuth 1.0a first and bearer token as fallback."""
    try:
        image = decode_image(image_data)
    except MediaError as exc:
        return MediaUploadResult.failed(str(exc))

    files = {"media": ("image", image.data, image.mime_type)}
    last_error = "No valid X credentials provided for media upload"

    auth_headers: list[tuple[str, str]] = []
    if oauth is not None:
        auth_headers.append(
            (
                "OAuth 1.0a",
                oauth1.authorization_header(
                    "POST",
                    TWITTER_UPLOAD_URL,
                    consumer_key=oauth.consumer_key,
                    consumer_secret=oauth.consumer_secret,
                    token=oauth.token,
                    token_secret=oauth.token_secret,
                ),
            )
        )
    if bearer_token:
        auth_headers.append(("bearer token", f"Bearer {bearer_token}"))

    for scheme, header in auth_headers:
        try:
            resp = await client.post(
                TWITTER_UPLOAD_URL, headers={"Authorization": header}, files=files
            )
        except httpx.HTTPError as exc:
            last_error = f"X media upload error: {exc}"
            logger.warning("X media upload with %s failed: %s", scheme, exc)
            continue
        if resp.status_code in (200, 201):
            body = response_json(resp)
            media_id = body.get("media_id_string") if body is not None else None
            if media_id:
                return MediaUploadResult(success=True, media_id=str(media_id))
            last_error = "X media upload returned no media_id_string"
            continue
        last_error = (
            f"X media upload failed: {resp.status_code} {resp.reason_phrase} - {resp.text[:200]}"
        )
        logger.warning("X media upload with %s failed with status %s", scheme, resp.status_code)

    return MediaUploadResult.failed(last_error)


async def create_blossom_auth_event(
    signer: EventSigner,
    sha256_hex: str,
    now: int | None = None,
) -> dict[str, Any]:
    """Build and sign the kind-24242 upload authorization for one blob."""
    created_at = now if now is not None else int(time.time())
    pubkey = await signer.get_public_key()
    event = build_event(
        pubkey,
        BLOSSOM_AUTH_CONTENT,
        kind=BLOSSOM_AUTH_KIND,
        tags=[
            ["t", "upload"],
            ["x", sha256_hex],
            ["expiration", str(created_at + BLOSSOM_AUTH_TTL_SECONDS)],
        ],
        created_at=created_at,
    )
    return await signer.sign_event(event)


def blossom_authorization_header(auth_event: dict[str, Any]) -> str:
    encoded = base64.b64encode(json.dumps(auth_event, separators=(",", ":")).encode()).decode()
    return f"Nostr {encoded}"


async def upload_to_blossom(
    client: httpx.AsyncClient,
    server_url: str,
    signer: EventSigner,
    image_data: str | ImagePayload,
) -> MediaUploadResult:
    """Strip metadata, then ``PUT {server}/upload`` with a signed Nostr authorization."""
    try:
        image = await asyncio.to_thread(strip_metadata, decode_image(image_data))
    except MediaError as exc:
        return MediaUploadResult.failed(str(exc))

    try:
        auth_event = await create_blossom_auth_event(signer, image.sha256)
    except Exception as exc:
        logger.exception("Failed to sign Blossom authorization")
        return MediaUploadResult.failed(f"Failed to sign Blossom authorization: {exc}")

    try:
        resp = await client.put(
            f"{server_url.rstrip('/')}/upload",
            headers={
                "Authorization": blossom_authorization_header(auth_event),
                "Content-Type": image.mime_type,
            },
            content=image.data,
        )
    except httpx.HTTPError as exc:
        return MediaUploadResult.failed(f"Blossom upload error: {exc}")

    if resp.status_code not in (200, 201):
        return MediaUploadResult.failed(
            f"Blossom upload failed: {resp.status_code} - {resp.text[:200]}"
        )
    body = response_json(resp)
    if body is None:
        return MediaUploadResult.failed("Blossom upload returned an invalid response")
    url = body.get("url") or body.get("download_url") or body.get("downloadUrl")
    if not url:
        return MediaUploadResult.failed("Blossom upload response contained no URL")
    dims = image_dimensions(image)
    width, height = dims if dims else (None, None)
    return MediaUploadResult(success=True, url=str(url), width=width, height=height)
