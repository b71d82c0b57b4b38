"""Image pull bookkeeping for the :latest refresh policy."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ImagePull(Base):
    """Last successful pull time of an image reference."""

    __tablename__ = "image_pulls"

    image: Mapped[str] = mapped_column(String(500), primary_key=True)
    pulled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        """String representation of ImagePull."""
        return f"<ImagePull(image={self.image}, pulled_at={self.pulled_at})>"
