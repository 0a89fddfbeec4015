"""Credential and platform schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class PlatformResponse(BaseModel):
    """Static description of a supported platform."""

    id: str
    name: str
    requires_auth: bool
    connection_test_path: str | None = None
    supports_media: bool


class CredentialUpdate(BaseModel):
    """Credentials to store for one platform."""

    credentials: dict[str, Any] = Field(
        description="Platform-specific credentials (stored encrypted as JSON)"
    )


class CredentialResponse(BaseModel):
    """A connected platform. Secrets are never returned."""

    platform: str
    created_at: str
    updated_at: str


class CredentialTestRequest(BaseModel):
    platform: str = Field(min_length=1)
    credentials: dict[str, Any] | None = Field(
        default=None, description="Credentials to test; stored credentials are used when omitted"
    )


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    data: dict[str, Any] | None = None
