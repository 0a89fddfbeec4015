"""Base protocol and data classes for multi-platform posting."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    import httpx


class CredentialError(ValueError):
    """Raised when a credential bag lacks fields a platform requires."""


@dataclass(frozen=True)
class Platform:
    """Static description of a supported platform."""

    id: str
    name: str
    requires_auth: bool = True
    connection_test_path: str | None = None
    supports_media: bool = True


@dataclass(frozen=True)
class PostContent:
    """One logical post, shared read-only by every platform attempt."""

    text: str
    images: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_images(self) -> bool:
        return len(self.images) > 0


@dataclass(frozen=True)
class PostResult:
    """Outcome of posting to a single platform."""

    success: bool
    post_id: str | None = None
    url: str | None = None
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> PostResult:
        return cls(success=False, error=error)


@dataclass(frozen=True)
class TestResult:
    """Outcome of a read-only connection check."""

    __test__ = False

    success: bool
    message: str
    data: dict[str, Any] | None = None


@runtime_checkable
class PlatformAdapter(Protocol):
    """Protocol every platform implementation satisfies."""

    platform: Platform

    async def test_connection(self, credentials: Mapping[str, Any]) -> TestResult:
        """Check the credentials against the platform without side effects."""
        ...

    async def post(self, content: PostContent, credentials: Mapping[str, Any]) -> PostResult:
        """Publish content to the platform."""
        ...


def credential_str(credentials: Mapping[str, Any], *names: str) -> str:
    """Return the first non-empty string value among ``names``, stripped."""
    for name in names:
        value = credentials.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def require_fields(platform_name: str, values: Mapping[str, str]) -> None:
    """Raise CredentialError naming every empty entry of ``values``."""
    missing = [name for name, value in values.items() if not value]
    if missing:
        msg = f"Missing required {platform_name} credentials: {', '.join(missing)}"
        raise CredentialError(msg)


def response_json(resp: httpx.Response) -> dict[str, Any] | None:
    """Return the response body if it is a JSON object, else None."""
    try:
        body = resp.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def describe_http_error(platform_name: str, resp: httpx.Response) -> str:
    """Format a failed response as ``<Platform> API error: <status> <message>``.

    Prefers the platform's own error message from a JSON body and falls back to
    the HTTP reason phrase.
    """
    detail = ""
    body = response_json(resp)
    if body is not None:
        for key in ("error_description", "detail", "message", "error", "title"):
            value = body.get(key)
            if isinstance(value, str) and value:
                detail = value
                break
        if not detail and isinstance(body.get("errors"), list) and body["errors"]:
            first = body["errors"][0]
            if isinstance(first, dict):
                detail = str(first.get("message") or first.get("detail") or "")
    if not detail:
        detail = resp.reason_phrase or resp.text[:200]
    return f"{platform_name} API error: HTTP {resp.status_code} {detail}".rstrip()
