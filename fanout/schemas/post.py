"""Post request and result schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PostRequest(BaseModel):
    """Request to publish one message to several platforms."""

    message: str = Field(description="Text of the post")
    platforms: list[str] = Field(description="Platform ids, e.g. 'mastodon' or 'nostr'")
    images: list[str] = Field(
        default_factory=list, description="Images as base64 data URLs"
    )


class PostResultResponse(BaseModel):
    success: bool
    post_id: str | None = None
    url: str | None = None
    error: str | None = None


class PostResponse(BaseModel):
    """Aggregated outcome of a post request."""

    job_id: str
    status: str
    results: dict[str, PostResultResponse]
    created_at: str
    completed_at: str | None = None


class PostHistoryEntry(BaseModel):
    id: int
    platform: str
    post_id: str | None = None
    success: bool
    content_length: int
    has_images: bool
    error_message: str | None = None
    created_at: str


class PostHistoryResponse(BaseModel):
    items: list[PostHistoryEntry]
