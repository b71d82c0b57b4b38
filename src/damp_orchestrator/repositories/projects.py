"""Repository for Project model operations."""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from damp_orchestrator.models.projects import Project

from .base import BaseRepository


class ProjectRepository(BaseRepository[Project]):
    """Repository for project CRUD operations."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize project repository.

        Args:
            session: Database session
        """
        super().__init__(session, Project)

    async def list_ordered(self) -> list[Project]:
        """
        List projects in display order.

        Returns:
            Projects sorted by their order, then creation time
        """
        stmt = select(Project).order_by(Project.sort_order, Project.created_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_by_name(self, name: str) -> Project | None:
        stmt = select(Project).where(Project.name == name)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def next_order(self) -> int:
        """
        Get the order value for a newly created project.

        Returns:
            One past the current maximum order, or 0 when empty
        """
        result = await self.session.execute(select(func.max(Project.sort_order)))
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    async def reorder(self, project_ids: list[str]) -> None:
        """
        Assign display order from a list of project IDs.

        Args:
            project_ids: Project IDs in their new order; unknown IDs are ignored
        """
        for index, project_id in enumerate(project_ids):
            project = await self.get(project_id)
            if project is not None:
                project.sort_order = index
        await self.session.flush()
