"""Per-user account settings."""

from __future__ import annotations

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fanout.models.base import Base


class UserSettings(Base):
    """Auto-delete preference and last activity of one user."""

    __tablename__ = "user_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    auto_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_activity: Mapped[str] = mapped_column(Text, nullable=False, index=True)
