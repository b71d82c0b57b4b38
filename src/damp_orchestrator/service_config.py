"""Container configuration types and the default/custom merge policy."""

from dataclasses import dataclass, replace
from typing import Any

SECOND_NS = 1_000_000_000


@dataclass(frozen=True)
class HealthcheckSpec:
    """Docker healthcheck; durations are nanoseconds as the Engine API expects."""

    test: tuple[str, ...]
    retries: int = 3
    timeout: int = 5 * SECOND_NS
    interval: int | None = None
    start_period: int | None = None

    def to_docker(self) -> dict[str, Any]:
        """Build the ``healthcheck`` argument for ``containers.create``."""
        spec: dict[str, Any] = {
            "test": list(self.test),
            "retries": self.retries,
            "timeout": self.timeout,
        }
        if self.interval is not None:
            spec["interval"] = self.interval
        if self.start_period is not None:
            spec["start_period"] = self.start_period
        return spec


@dataclass(frozen=True)
class ServiceConfig:
    """Complete container configuration for a service or project container."""

    image: str
    # (host port, container port)
    ports: tuple[tuple[int, int], ...] = ()
    environment_vars: tuple[str, ...] = ()
    # "volume:/path" or "/host/path:/path"
    volume_bindings: tuple[str, ...] = ()
    data_volume: str | None = None
    healthcheck: HealthcheckSpec | None = None
    container_name: str | None = None


@dataclass(frozen=True)
class CustomConfig:
    """User override applied on top of a :class:`ServiceConfig`.

    ``None`` means "not provided" and keeps the default for that field.
    """

    ports: tuple[tuple[int, int], ...] | None = None
    environment_vars: tuple[str, ...] | None = None
    volume_bindings: tuple[str, ...] | None = None
    container_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CustomConfig | None":
        """Build from a persisted or tool-supplied dictionary."""
        if not data:
            return None
        ports = data.get("ports")
        env = data.get("environment_vars")
        bindings = data.get("volume_bindings")
        return cls(
            ports=(
                tuple((int(ext), int(inner)) for ext, inner in ports)
                if ports is not None
                else None
            ),
            environment_vars=tuple(env) if env is not None else None,
            volume_bindings=tuple(bindings) if bindings is not None else None,
            container_name=data.get("container_name"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.ports is not None:
            data["ports"] = [list(pair) for pair in self.ports]
        if self.environment_vars is not None:
            data["environment_vars"] = list(self.environment_vars)
        if self.volume_bindings is not None:
            data["volume_bindings"] = list(self.volume_bindings)
        if self.container_name is not None:
            data["container_name"] = self.container_name
        return data


def merge_configs(default: ServiceConfig, custom: CustomConfig | None) -> ServiceConfig:
    """
    Merge a user override into a default configuration.

    Per-field policy:

    - ``ports``: replaced when provided
    - ``environment_vars``: appended to the defaults
    - ``volume_bindings``: replaced when provided
    - ``container_name``: replaced when provided
    - every other field: kept from the default

    Args:
        default: Registry or project default configuration
        custom: Optional override

    Returns:
        Merged configuration
    """
    if custom is None:
        return default

    return replace(
        default,
        ports=custom.ports if custom.ports is not None else default.ports,
        environment_vars=default.environment_vars + (custom.environment_vars or ()),
        volume_bindings=(
            custom.volume_bindings
            if custom.volume_bindings is not None
            else default.volume_bindings
        ),
        container_name=(
            custom.container_name
            if custom.container_name is not None
            else default.container_name
        ),
    )


def volume_names_from_bindings(bindings: tuple[str, ...] | list[str]) -> list[str]:
    """
    Extract named volumes from bind specifications, skipping host paths.

    Args:
        bindings: ``source:target[:mode]`` strings

    Returns:
        Volume names in order, without duplicates
    """
    names: list[str] = []
    for binding in bindings:
        source = binding.split(":", 1)[0]
        if not source or source.startswith(("/", ".", "~")):
            continue
        # Windows drive letter of a host path
        if len(source) == 1 and source.isalpha():
            continue
        if source not in names:
            names.append(source)
    return names
