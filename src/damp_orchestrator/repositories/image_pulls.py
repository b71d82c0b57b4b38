"""Repository for image pull timestamps."""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from damp_orchestrator.models.image_pulls import ImagePull

from .base import BaseRepository


class ImagePullRepository(BaseRepository[ImagePull]):
    """Repository for per-image last pull times."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize image pull repository.

        Args:
            session: Database session
        """
        super().__init__(session, ImagePull)

    async def get_last_pull(self, image: str) -> datetime | None:
        """
        Get the last successful pull time of an image.

        Args:
            image: Image reference

        Returns:
            Timezone-aware UTC timestamp, or None if never pulled
        """
        record = await self.get(image)
        if record is None:
            return None
        pulled_at = record.pulled_at
        # SQLite drops tzinfo on round-trip
        if pulled_at.tzinfo is None:
            pulled_at = pulled_at.replace(tzinfo=timezone.utc)
        return pulled_at

    async def record_pull(self, image: str, pulled_at: datetime | None = None) -> None:
        """
        Store the pull time of an image.

        Args:
            image: Image reference
            pulled_at: Pull time, defaults to now
        """
        await self.save(ImagePull(image=image, pulled_at=pulled_at or datetime.now(timezone.utc)))
