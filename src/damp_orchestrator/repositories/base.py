"""Base repository class for common CRUD operations."""

from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from damp_orchestrator.models.base import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Base repository with common CRUD operations."""

    def __init__(self, session: AsyncSession, model: type[T]) -> None:
        """
        Initialize repository.

        Args:
            session: Database session
            model: SQLAlchemy model class
        """
        self.session = session
        self.model = model

    async def get(self, id: str) -> T | None:
        """
        Get entity by primary key.

        Args:
            id: Primary key value

        Returns:
            Entity or None if not found
        """
        return await self.session.get(self.model, id)

    async def list_all(self) -> list[T]:
        """
        Get all entities.

        Returns:
            List of entities
        """
        result = await self.session.execute(select(self.model))
        return list(result.scalars().all())

    async def create(self, entity: T) -> T:
        """
        Create a new entity.

        Args:
            entity: Entity to create

        Returns:
            Created entity
        """
        self.session.add(entity)
        await self.session.flush()
        return entity

    async def save(self, entity: T) -> T:
        """
        Insert or update an entity by primary key.

        Args:
            entity: Entity to persist

        Returns:
            The persistent instance attached to this session
        """
        merged = await self.session.merge(entity)
        await self.session.flush()
        return merged

    async def delete_by_id(self, id: str) -> bool:
        """
        Delete an entity by primary key.

        Args:
            id: Primary key value

        Returns:
            True if an entity was deleted
        """
        entity = await self.get(id)
        if entity is None:
            return False
        await self.session.delete(entity)
        await self.session.flush()
        return True
