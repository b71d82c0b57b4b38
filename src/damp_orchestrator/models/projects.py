"""Project model for per-project devcontainer environments."""

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base


class Project(Base):
    """A PHP project with its dedicated volume, domain and devcontainer files."""

    __tablename__ = "projects"

    # UUID4 string
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Sanitized name, unique across projects
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # basic-php, laravel or existing
    type: Mapped[str] = mapped_column(String(20), nullable=False)

    # create or import
    import_method: Mapped[str] = mapped_column(String(10), nullable=False)

    path: Mapped[str] = mapped_column(String(1000), nullable=False)
    volume_name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str] = mapped_column(String(255), nullable=False)

    # Runtime selection
    php_version: Mapped[str] = mapped_column(String(10), nullable=False)
    php_variant: Mapped[str] = mapped_column(String(20), nullable=False)
    node_version: Mapped[str] = mapped_column(String(10), nullable=False)
    php_extensions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    enable_claude_ai: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    forwarded_port: Mapped[int] = mapped_column(Integer, nullable=False)
    network_name: Mapped[str] = mapped_column(String(100), nullable=False)
    post_start_command: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    post_create_command: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Fresh Laravel scaffolding options, as submitted
    laravel_options: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # [{"service_id": ..., "custom_credentials": {...}}]
    bundled_services: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Partial-failure bookkeeping for the creation pipeline
    devcontainer_created: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    volume_copied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary for tool output."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "import_method": self.import_method,
            "path": self.path,
            "volume_name": self.volume_name,
            "domain": self.domain,
            "php_version": self.php_version,
            "php_variant": self.php_variant,
            "node_version": self.node_version,
            "php_extensions": list(self.php_extensions or []),
            "enable_claude_ai": self.enable_claude_ai,
            "forwarded_port": self.forwarded_port,
            "network_name": self.network_name,
            "bundled_services": list(self.bundled_services or []),
            "order": self.sort_order,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "devcontainer_created": self.devcontainer_created,
            "volume_copied": self.volume_copied,
        }

    def __repr__(self) -> str:
        """String representation of Project."""
        return f"<Project(id={self.id}, name={self.name}, type={self.type})>"
