"""Service state model for installed shared services."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base


class ServiceState(Base):
    """Record that a shared service was installed through this system."""

    __tablename__ = "service_states"

    # ServiceId value, e.g. "mysql"
    service_id: Mapped[str] = mapped_column(String(50), primary_key=True)

    # User override applied on top of the registry default config
    custom_config: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    installed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        """String representation of ServiceState."""
        return f"<ServiceState(service_id={self.service_id})>"
