"""SQLAlchemy models for DAMP Orchestrator."""

from .app_settings import AppSetting
from .base import Base
from .image_pulls import ImagePull
from .projects import Project
from .service_states import ServiceState

__all__ = ["AppSetting", "Base", "ImagePull", "Project", "ServiceState"]
