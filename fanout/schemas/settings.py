"""User settings schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field, StrictBool


class RelayItem(BaseModel):
    url: str = Field(min_length=1, description="Relay URL, e.g. 'wss://nos.lol'")
    read: bool = True
    write: bool = True


class RelaysResponse(BaseModel):
    relays: list[RelayItem]


class RelaysUpdate(BaseModel):
    relays: list[RelayItem]


class AutoDeleteResponse(BaseModel):
    enabled: bool
    last_activity: str


class AutoDeleteUpdate(BaseModel):
    enabled: StrictBool


class DeleteAllResponse(BaseModel):
    success: bool
    message: str
    deleted: dict[str, int]
