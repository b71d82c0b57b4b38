"""Project input types and the naming rules derived from them."""

import re
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from damp_orchestrator.service_definitions import ServiceId

PHP_VERSIONS = ("7.4", "8.1", "8.2", "8.3", "8.4")
NODE_VERSIONS = ("none", "lts", "latest", "20", "22", "24", "25")
PHP_VARIANTS = ("fpm-apache", "fpm-nginx", "frankenphp", "fpm")

LARAVEL_MIN_PHP_VERSION = "8.2"
PROJECT_VOLUME_PREFIX = "damp_project_"
PROJECT_DOMAIN_SUFFIX = ".local"


class ProjectType(str, Enum):
    BASIC_PHP = "basic-php"
    LARAVEL = "laravel"
    EXISTING = "existing"


class ImportMethod(str, Enum):
    """Whether the project folder was created by us or imported as-is."""

    CREATE = "create"
    IMPORT = "import"


def sanitize_name(name: str) -> str:
    """
    Normalise a project name for use in folders, volumes and domains.

    Lowercases, turns every run of non-alphanumerics into one hyphen and
    strips leading and trailing hyphens. Idempotent.
    """
    sanitized = re.sub(r"[^a-z0-9]+", "-", name.lower())
    return sanitized.strip("-")


def volume_name_for(project_name: str) -> str:
    return f"{PROJECT_VOLUME_PREFIX}{project_name}"


def domain_for(project_name: str) -> str:
    return f"{project_name}{PROJECT_DOMAIN_SUFFIX}"


def _from_camel(data: dict[str, Any], aliases: dict[str, str]) -> dict[str, Any]:
    return {aliases.get(key, key): value for key, value in data.items()}


@dataclass(frozen=True)
class BundledServiceCredentials:
    """Credential overrides for a bundled database."""

    database: str | None = None
    username: str | None = None
    password: str | None = None
    root_password: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "BundledServiceCredentials | None":
        if not data:
            return None
        data = _from_camel(data, {"rootPassword": "root_password"})
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}


@dataclass(frozen=True)
class BundledService:
    """A service embedded in a project's own compose stack."""

    service_id: ServiceId
    custom_credentials: BundledServiceCredentials | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BundledService":
        data = _from_camel(
            data, {"serviceId": "service_id", "customCredentials": "custom_credentials"}
        )
        return cls(
            service_id=ServiceId(data["service_id"]),
            custom_credentials=BundledServiceCredentials.from_dict(data.get("custom_credentials")),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"service_id": self.service_id.value}
        if self.custom_credentials:
            data["custom_credentials"] = self.custom_credentials.to_dict()
        return data


def bundled_services_from_json(items: list[dict[str, Any]] | None) -> list[BundledService]:
    return [BundledService.from_dict(item) for item in items or []]


@dataclass(frozen=True)
class LaravelOptions:
    """Options for scaffolding a fresh Laravel application."""

    starter_kit: str = "none"
    custom_starter_kit_url: str | None = None
    authentication: str = "laravel"
    use_volt: bool = False
    testing_framework: str = "pest"
    install_boost: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LaravelOptions | None":
        if data is None:
            return None
        data = _from_camel(
            data,
            {
                "starterKit": "starter_kit",
                "customStarterKitUrl": "custom_starter_kit_url",
                "useVolt": "use_volt",
                "testingFramework": "testing_framework",
                "installBoost": "install_boost",
            },
        )
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class CreateProjectInput:
    """Request to create or import a project.

    For created projects ``path`` is the parent folder and a subfolder named
    after the sanitized name is used; for imports (``type=existing``) it is
    the project folder itself.
    """

    name: str
    path: str
    php_version: str = "8.3"
    node_version: str = "lts"
    php_variant: str = "fpm-apache"
    php_extensions: list[str] = field(default_factory=list)
    enable_claude_ai: bool = False
    type: ProjectType | None = None
    overwrite_existing: bool = False
    laravel_options: LaravelOptions | None = None
    bundled_services: list[BundledService] = field(default_factory=list)


@dataclass
class UpdateProjectInput:
    """Partial project update; ``None`` fields are left unchanged."""

    id: str
    name: str | None = None
    domain: str | None = None
    php_version: str | None = None
    node_version: str | None = None
    php_variant: str | None = None
    php_extensions: list[str] | None = None
    enable_claude_ai: bool | None = None
    regenerate_files: bool = False

    def changes(self) -> dict[str, Any]:
        """Fields that were provided, keyed by project attribute name."""
        skip = {"id", "regenerate_files"}
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in skip and getattr(self, f.name) is not None
        }
