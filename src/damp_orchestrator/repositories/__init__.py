"""Repositories for persisted DAMP state."""

from .app_settings import AppSettingsRepository
from .base import BaseRepository
from .image_pulls import ImagePullRepository
from .projects import ProjectRepository
from .service_states import ServiceStateRepository

__all__ = [
    "AppSettingsRepository",
    "BaseRepository",
    "ImagePullRepository",
    "ProjectRepository",
    "ServiceStateRepository",
]
