"""Key/value application settings persisted across restarts."""

from typing import Any

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base


class AppSetting(Base):
    """Single persisted application setting."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        """String representation of AppSetting."""
        return f"<AppSetting(key={self.key})>"
