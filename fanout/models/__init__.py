"""SQLAlchemy ORM models for Fanout."""

from fanout.models.base import Base
from fanout.models.credential import PlatformCredential
from fanout.models.post_log import PostLog
from fanout.models.relay import NostrRelay
from fanout.models.user_settings import UserSettings

__all__ = [
    "Base",
    "NostrRelay",
    "PlatformCredential",
    "PostLog",
    "UserSettings",
]
