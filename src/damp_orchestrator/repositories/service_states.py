"""Repository for ServiceState model operations."""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from damp_orchestrator.models.service_states import ServiceState

from .base import BaseRepository


class ServiceStateRepository(BaseRepository[ServiceState]):
    """Repository for installed service records."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize service state repository.

        Args:
            session: Database session
        """
        super().__init__(session, ServiceState)

    async def mark_installed(
        self, service_id: str, custom_config: dict | None = None
    ) -> ServiceState:
        """
        Record a service as installed, keeping the original install time.

        Args:
            service_id: Service ID
            custom_config: User override used for the install

        Returns:
            Persisted service state
        """
        now = datetime.now(timezone.utc)
        state = await self.get(service_id)
        if state is None:
            state = ServiceState(
                service_id=service_id,
                custom_config=custom_config,
                installed_at=now,
                updated_at=now,
            )
            return await self.create(state)

        state.custom_config = custom_config
        state.updated_at = now
        await self.session.flush()
        return state

    async def service_ids(self) -> set[str]:
        return {state.service_id for state in await self.list_all()}
