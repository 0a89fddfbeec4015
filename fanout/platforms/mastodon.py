"""Mastodon posting using the Mastodon HTTP API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

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
from fanout.platforms.media import upload_to_mastodon
from fanout.platforms.ssrf import public_client

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

VERIFY_PATH = "/api/v1/accounts/verify_credentials"


def normalize_instance_url(raw_url: str) -> str:
    """Return ``https://host[:port]`` for a user-entered instance URL.

    A bare host gets ``https://``; trailing slashes are dropped. Other schemes,
    userinfo, paths, queries and fragments are rejected with CredentialError.
    """
    candidate = raw_url.strip().rstrip("/")
    if not candidate:
        msg = "Mastodon instance URL is required"
        raise CredentialError(msg)
    if "://" not in candidate:
        candidate = f"https://{candidate}"

    parsed = urlparse(candidate)
    if parsed.scheme.lower() != "https":
        msg = "Mastodon instance URL must use https"
        raise CredentialError(msg)
    if not parsed.hostname:
        msg = "Mastodon instance URL has no host"
        raise CredentialError(msg)
    if parsed.username is not None or parsed.password is not None:
        msg = "Mastodon instance URL must not contain credentials"
        raise CredentialError(msg)
    if parsed.path not in ("", "/") or parsed.params or parsed.query or parsed.fragment:
        msg = "Mastodon instance URL must not contain a path, query or fragment"
        raise CredentialError(msg)
    try:
        port = parsed.port
    except ValueError as exc:
        msg = "Mastodon instance URL has an invalid port"
        raise CredentialError(msg) from exc

    host = parsed.hostname
    if ":" in host:
        host = f"[{host}]"
    suffix = f":{port}" if port is not None else ""
    return f"https://{host}{suffix}"


@dataclass(frozen=True)
class MastodonCredentials:
    instance_url: str
    access_token: str

    @classmethod
    def from_mapping(cls, credentials: Mapping[str, Any]) -> MastodonCredentials:
        raw_url = credential_str(credentials, "instanceUrl", "instance_url")
        access_token = credential_str(credentials, "accessToken", "access_token")
        require_fields("Mastodon", {"instanceUrl": raw_url, "accessToken": access_token})
        return cls(instance_url=normalize_instance_url(raw_url), access_token=access_token)

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


class MastodonAdapter:
    """Adapter for Mastodon-compatible instances."""

    platform = Platform(
        id="mastodon",
        name="Mastodon",
        connection_test_path=VERIFY_PATH,
    )

    def __init__(
        self,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def test_connection(self, credentials: Mapping[str, Any]) -> TestResult:
        """Verify the access token against ``verify_credentials``."""
        try:
            creds = MastodonCredentials.from_mapping(credentials)
        except CredentialError as exc:
            return TestResult(success=False, message=str(exc))

        try:
            async with public_client(self._timeout, self._transport) as client:
                resp = await client.get(f"{creds.instance_url}{VERIFY_PATH}", headers=creds.headers)
        except httpx.HTTPError as exc:
            logger.warning("Mastodon connection test failed: %s", exc)
            return TestResult(
                success=False,
                message=f"Could not reach Mastodon instance {creds.instance_url}: {exc}",
            )

        if resp.status_code == 401:
            return TestResult(
                success=False,
                message="Invalid access token. Please check your Mastodon credentials.",
            )
        if resp.status_code == 404:
            return TestResult(
                success=False,
                message="Instance not found. Please check your Mastodon instance URL.",
            )
        if resp.status_code >= 500:
            return TestResult(
                success=False,
                message=f"Mastodon instance is unavailable (HTTP {resp.status_code}).",
            )
        if resp.status_code != 200:
            return TestResult(success=False, message=describe_http_error("Mastodon", resp))

        account = response_json(resp) or {}
        host = urlparse(creds.instance_url).hostname or ""
        username = account.get("username") or account.get("acct", "")
        return TestResult(
            success=True,
            message=f"Successfully connected to @{username}@{host}",
            data={
                "username": username,
                "displayName": account.get("display_name") or username,
                "instance": host,
            },
        )

    async def post(self, content: PostContent, credentials: Mapping[str, Any]) -> PostResult:
        """Upload attachments, then create a status."""
        try:
            creds = MastodonCredentials.from_mapping(credentials)
        except CredentialError as exc:
            return PostResult.failed(str(exc))

        try:
            async with public_client(self._timeout, self._transport) as client:
                media_ids: list[str] = []
                for index, image in enumerate(content.images):
                    upload = await upload_to_mastodon(
                        client, creds.instance_url, creds.access_token, image
                    )
                    if upload.success and upload.media_id:
                        media_ids.append(upload.media_id)
                    else:
                        logger.warning("Mastodon image %d upload failed: %s", index, upload.error)
                if content.has_images and not media_ids:
                    logger.warning("No Mastodon images uploaded, posting text only")

                payload: dict[str, Any] = {"status": content.text}
                if media_ids:
                    payload["media_ids"] = media_ids
                resp = await client.post(
                    f"{creds.instance_url}/api/v1/statuses",
                    json=payload,
                    headers=creds.headers,
                )
        except httpx.HTTPError as exc:
            logger.exception("Mastodon post HTTP error")
            return PostResult.failed(f"Mastodon HTTP error: {exc}")

        if resp.status_code not in (200, 201):
            return PostResult.failed(describe_http_error("Mastodon", resp))
        data = response_json(resp) or {}
        return PostResult(
            success=True,
            post_id=str(data.get("id", "")),
            url=data.get("url") or data.get("uri"),
        )
