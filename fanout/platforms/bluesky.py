"""Bluesky posting using app-password sessions on the AT Protocol."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

from fanout.platforms.base import (
    CredentialError,
    Platform,
    PostContent,
    PostResult,
    TestResult,
    credential_str,
    describe_http_error,
    require_fields,
    response_json,
)
from fanout.platforms.media import upload_to_bluesky

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_URL = "https://bsky.social"
POST_COLLECTION = "app.bsky.feed.post"

_INVISIBLE_RE = re.compile(r"[\u200b-\u200f\u202a-\u202e\ufeff]")
_NON_ASCII_RE = re.compile(r"[^\x00-\x7f]")
_URL_RE = re.compile(r"https?://[^\s<>\"']+")


def strip_invisible(value: str) -> str:
    return _INVISIBLE_RE.sub("", value).strip()


def normalize_handle(raw: str) -> str:
    """Clean a pasted handle: invisible and non-ASCII chars, leading ``@``.

    A bare name without a dot is treated as a ``.bsky.social`` handle.
    """
    handle = _NON_ASCII_RE.sub("", strip_invisible(raw)).strip().lstrip("@")
    if handle and "." not in handle:
        handle = f"{handle}.bsky.social"
    return handle


@dataclass(frozen=True)
class BlueskyCredentials:
    handle: str
    app_password: str

    @classmethod
    def from_mapping(cls, credentials: Mapping[str, Any]) -> BlueskyCredentials:
        handle = normalize_handle(credential_str(credentials, "handle", "identifier"))
        password = strip_invisible(credential_str(credentials, "appPassword", "password"))
        require_fields("Bluesky", {"handle": handle, "appPassword": password})
        return cls(handle=handle, app_password=password)


@dataclass(frozen=True)
class _Session:
    access_jwt: str
    did: str
    handle: str


class BlueskySessionError(Exception):
    """Raised when ``createSession`` does not return a usable session."""


def _find_link_facets(text: str) -> list[dict[str, Any]]:
    """Build rich text link facets; indexes are UTF-8 byte offsets."""
    facets: list[dict[str, Any]] = []
    for match in _URL_RE.finditer(text):
        url = match.group(0).rstrip(".,;:!?)")
        byte_start = len(text[: match.start()].encode("utf-8"))
        byte_end = byte_start + len(url.encode("utf-8"))
        facets.append(
            {
                "index": {"byteStart": byte_start, "byteEnd": byte_end},
                "features": [{"$type": "app.bsky.richtext.facet#link", "uri": url}],
            }
        )
    return facets


class BlueskyAdapter:
    """Adapter for Bluesky via ``com.atproto`` XRPC calls."""

    platform = Platform(
        id="bluesky",
        name="Bluesky",
        connection_test_path="/xrpc/com.atproto.server.getSession",
    )

    def __init__(
        self,
        *,
        service_url: str = DEFAULT_SERVICE_URL,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._service_url = service_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout)

    async def _create_session(
        self, client: httpx.AsyncClient, creds: BlueskyCredentials
    ) -> _Session:
        resp = await client.post(
            f"{self._service_url}/xrpc/com.atproto.server.createSession",
            json={"identifier": creds.handle, "password": creds.app_password},
        )
        if resp.status_code == 401:
            detail = str((response_json(resp) or {}).get("message", ""))
            msg = (
                f"Invalid BlueSky credentials: {detail or 'authentication failed'}. "
                "Please check your handle and app password."
            )
            raise BlueskySessionError(msg)
        if resp.status_code != 200:
            raise BlueskySessionError(describe_http_error("Bluesky", resp))
        data = response_json(resp) or {}
        access_jwt = data.get("accessJwt")
        did = data.get("did")
        if not access_jwt or not did:
            msg = "Bluesky session response missing accessJwt or did"
            raise BlueskySessionError(msg)
        return _Session(access_jwt=access_jwt, did=did, handle=data.get("handle") or creds.handle)

    async def test_connection(self, credentials: Mapping[str, Any]) -> TestResult:
        """Create a session, then confirm it with ``getSession``."""
        try:
            creds = BlueskyCredentials.from_mapping(credentials)
        except CredentialError as exc:
            return TestResult(success=False, message=str(exc))

        try:
            async with self._client() as client:
                session = await self._create_session(client, creds)
                resp = await client.get(
                    f"{self._service_url}/xrpc/com.atproto.server.getSession",
                    headers={"Authorization": f"Bearer {session.access_jwt}"},
                )
        except BlueskySessionError as exc:
            return TestResult(success=False, message=str(exc))
        except httpx.HTTPError as exc:
            logger.warning("Bluesky connection test failed: %s", exc)
            return TestResult(success=False, message=f"Could not reach Bluesky: {exc}")

        if resp.status_code != 200:
            return TestResult(success=False, message=describe_http_error("Bluesky", resp))
        data = response_json(resp) or {}
        handle = data.get("handle") or session.handle
        return TestResult(
            success=True,
            message=f"Successfully connected to BlueSky as @{handle}",
            data={"handle": handle, "did": data.get("did") or session.did},
        )

    async def post(self, content: PostContent, credentials: Mapping[str, Any]) -> PostResult:
        """Create a session, upload blobs, then create an ``app.bsky.feed.post`` record."""
        try:
            creds = BlueskyCredentials.from_mapping(credentials)
        except CredentialError as exc:
            return PostResult.failed(str(exc))

        try:
            async with self._client() as client:
                session = await self._create_session(client, creds)

                images: list[dict[str, Any]] = []
                for index, image in enumerate(content.images):
                    upload = await upload_to_bluesky(
                        client, self._service_url, session.access_jwt, image
                    )
                    if not upload.success or upload.blob is None:
                        logger.warning("Bluesky image %d upload failed: %s", index, upload.error)
                        continue
                    entry: dict[str, Any] = {"alt": "", "image": upload.blob}
                    if upload.width and upload.height:
                        entry["aspectRatio"] = {"width": upload.width, "height": upload.height}
                    images.append(entry)
                if content.has_images and not images:
                    logger.warning("No Bluesky images uploaded, posting text only")

                record: dict[str, Any] = {
                    "$type": POST_COLLECTION,
                    "text": content.text,
                    "createdAt": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
                }
                facets = _find_link_facets(content.text)
                if facets:
                    record["facets"] = facets
                if images:
                    record["embed"] = {"$type": "app.bsky.embed.images", "images": images}

                resp = await client.post(
                    f"{self._service_url}/xrpc/com.atproto.repo.createRecord",
                    json={"repo": session.did, "collection": POST_COLLECTION, "record": record},
                    headers={"Authorization": f"Bearer {session.access_jwt}"},
                )
        except BlueskySessionError as exc:
            return PostResult.failed(str(exc))
        except httpx.HTTPError as exc:
            logger.exception("Bluesky post HTTP error")
            return PostResult.failed(f"Bluesky HTTP error: {exc}")

        if resp.status_code != 200:
            return PostResult.failed(describe_http_error("Bluesky", resp))
        data = response_json(resp) or {}
        uri = data.get("uri", "")
        rkey = uri.rsplit("/", 1)[-1] if uri else ""
        return PostResult(
            success=True,
            post_id=uri or None,
            url=f"https://bsky.app/profile/{session.handle}/post/{rkey}" if rkey else None,
        )
