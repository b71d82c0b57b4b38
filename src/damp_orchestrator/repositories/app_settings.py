"""Repository for persisted application settings."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from damp_orchestrator.models.app_settings import AppSetting

from .base import BaseRepository

CADDY_CERT_INSTALLED = "caddy_cert_installed"


class AppSettingsRepository(BaseRepository[AppSetting]):
    """Repository for key/value application settings."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize app settings repository.

        Args:
            session: Database session
        """
        super().__init__(session, AppSetting)

    async def get_value(self, key: str, default: Any = None) -> Any:
        setting = await self.get(key)
        return default if setting is None else setting.value

    async def set_value(self, key: str, value: Any) -> None:
        await self.save(AppSetting(key=key, value=value))

    async def is_caddy_cert_installed(self) -> bool:
        return bool(await self.get_value(CADDY_CERT_INSTALLED, False))

    async def set_caddy_cert_installed(self, installed: bool) -> None:
        await self.set_value(CADDY_CERT_INSTALLED, installed)
