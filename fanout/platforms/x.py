"""X (Twitter) posting using API v2 with OAuth 1.0a or a bearer token."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from fanout.platforms import oauth1
from fanout.platforms.base import (
    CredentialError,
    Platform,
    PostContent,
    PostResult,
    TestResult,
    credential_str,
    describe_http_error,
    response_json,
)
from fanout.platforms.media import OAuth1Keys, upload_to_twitter

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

API_BASE = "https://api.twitter.com/2"
USERS_ME_URL = f"{API_BASE}/users/me"
TWEETS_URL = f"{API_BASE}/tweets"

APP_ONLY_MESSAGE = (
    "Twitter requires an OAuth 2.0 User Context Bearer Token for posting tweets. "
    "App-Only tokens cannot post tweets. Use OAuth 1.0a keys (API key, API secret, "
    "access token and access token secret) or a User Context token."
)


@dataclass(frozen=True)
class XCredentials:
    """Either a full OAuth 1.0a key set or a bearer token."""

    oauth: OAuth1Keys | None = None
    bearer_token: str | None = None

    @classmethod
    def from_mapping(cls, credentials: Mapping[str, Any]) -> XCredentials:
        keys = {
            "apiKey": credential_str(credentials, "apiKey", "api_key"),
            "apiSecret": credential_str(credentials, "apiSecret", "api_secret"),
            "accessToken": credential_str(credentials, "accessToken", "access_token"),
            "accessTokenSecret": credential_str(
                credentials, "accessTokenSecret", "access_token_secret"
            ),
        }
        bearer = credential_str(credentials, "bearerToken", "bearer_token")
        if all(keys.values()):
            return cls(
                oauth=OAuth1Keys(
                    consumer_key=keys["apiKey"],
                    consumer_secret=keys["apiSecret"],
                    token=keys["accessToken"],
                    token_secret=keys["accessTokenSecret"],
                ),
                bearer_token=bearer or None,
            )
        if bearer:
            return cls(bearer_token=bearer)
        missing = [name for name, value in keys.items() if not value]
        msg = (
            f"Missing required X credentials: {', '.join(missing)} "
            "(or provide bearerToken)"
        )
        raise CredentialError(msg)

    @property
    def uses_oauth1(self) -> bool:
        return self.oauth is not None

    def authorization(self, method: str, url: str) -> str:
        if self.oauth is not None:
            return oauth1.authorization_header(
                method,
                url,
                consumer_key=self.oauth.consumer_key,
                consumer_secret=self.oauth.consumer_secret,
                token=self.oauth.token,
                token_secret=self.oauth.token_secret,
            )
        return f"Bearer {self.bearer_token}"


def _error_detail(resp: httpx.Response) -> str:
    body = response_json(resp)
    if body is None:
        return ""
    return str(body.get("detail") or body.get("title") or "")


class XAdapter:
    """Adapter for X (Twitter) API v2."""

    platform = Platform(
        id="twitter",
        name="X (Twitter)",
        connection_test_path="/2/users/me",
    )

    def __init__(
        self,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout)

    async def test_connection(self, credentials: Mapping[str, Any]) -> TestResult:
        """Look up the authenticated user with ``GET /2/users/me``."""
        try:
            creds = XCredentials.from_mapping(credentials)
        except CredentialError as exc:
            return TestResult(success=False, message=str(exc))

        try:
            async with self._client() as client:
                resp = await client.get(
                    USERS_ME_URL,
                    headers={"Authorization": creds.authorization("GET", USERS_ME_URL)},
                )
        except httpx.HTTPError as exc:
            logger.warning("X connection test failed: %s", exc)
            return TestResult(success=False, message=f"Could not reach X: {exc}")

        if resp.status_code == 401:
            if creds.uses_oauth1:
                message = "Invalid X API keys or access tokens. Please check your credentials."
            else:
                message = "Invalid bearer token. Please check your X credentials."
            return TestResult(success=False, message=message)
        if resp.status_code == 403:
            if creds.uses_oauth1:
                message = "Access forbidden. Check that your X app has read and write permissions."
            else:
                message = (
                    "Access forbidden. This Bearer Token may be App-Only. "
                    "For posting tweets, you need a User Context Bearer Token."
                )
            return TestResult(success=False, message=message)
        if resp.status_code != 200:
            return TestResult(success=False, message=describe_http_error("X", resp))

        user = (response_json(resp) or {}).get("data") or {}
        username = user.get("username", "")
        return TestResult(
            success=True,
            message=f"Successfully connected to X as @{username}",
            data={"username": username, "name": user.get("name", ""), "id": user.get("id", "")},
        )

    async def post(self, content: PostContent, credentials: Mapping[str, Any]) -> PostResult:
        """Upload media through v1.1, then create the tweet through v2."""
        try:
            creds = XCredentials.from_mapping(credentials)
        except CredentialError as exc:
            return PostResult.failed(str(exc))

        try:
            async with self._client() as client:
                media_ids: list[str] = []
                for index, image in enumerate(content.images):
                    upload = await upload_to_twitter(
                        client, image, oauth=creds.oauth, bearer_token=creds.bearer_token
                    )
                    if upload.success and upload.media_id:
                        media_ids.append(upload.media_id)
                    else:
                        logger.warning("X image %d upload failed: %s", index, upload.error)
                if content.has_images and not media_ids:
                    logger.warning("No X images uploaded, posting text only")

                payload: dict[str, Any] = {"text": content.text}
                if media_ids:
                    payload["media"] = {"media_ids": media_ids}
                resp = await client.post(
                    TWEETS_URL,
                    json=payload,
                    headers={"Authorization": creds.authorization("POST", TWEETS_URL)},
                )
        except httpx.HTTPError as exc:
            logger.exception("X post HTTP error")
            return PostResult.failed(f"X HTTP error: {exc}")

        if resp.status_code == 403 and "Application-Only" in _error_detail(resp):
            return PostResult.failed(APP_ONLY_MESSAGE)
        if resp.status_code not in (200, 201):
            return PostResult.failed(describe_http_error("X", resp))

        tweet_id = str(((response_json(resp) or {}).get("data") or {}).get("id", ""))
        if not tweet_id:
            return PostResult.failed("X API response contained no tweet id")
        return PostResult(
            success=True,
            post_id=tweet_id,
            url=f"https://twitter.com/i/status/{tweet_id}",
        )
