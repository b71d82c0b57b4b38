"""Ownership labels attached to every managed container and volume.

Labels are the only record of what this system created: lookups are label
filter compositions and never rely on stored IDs. Internally labels are a
typed :class:`ResourceLabels` value; they become ``key=value`` strings only
when handed to the Docker daemon.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

LABEL_PREFIX = "com.damp"


class LabelKey(str, Enum):
    """Label keys understood by the daemon-facing code."""

    MANAGED = f"{LABEL_PREFIX}.managed"
    TYPE = f"{LABEL_PREFIX}.type"
    PROJECT_ID = f"{LABEL_PREFIX}.project-id"
    SERVICE_ID = f"{LABEL_PREFIX}.service-id"
    PROJECT_NAME = f"{LABEL_PREFIX}.project-name"
    SERVICE_TYPE = f"{LABEL_PREFIX}.service-type"
    VOLUME_NAME = f"{LABEL_PREFIX}.volume-name"
    HELPER_OPERATION = f"{LABEL_PREFIX}.helper-operation"


# Keys held in dedicated ResourceLabels fields; everything else is ``extra``
FIELD_KEYS = frozenset(
    key.value
    for key in (
        LabelKey.MANAGED,
        LabelKey.TYPE,
        LabelKey.PROJECT_ID,
        LabelKey.SERVICE_ID,
        LabelKey.PROJECT_NAME,
    )
)


class ResourceType(str, Enum):
    """Kinds of managed Docker objects."""

    PROJECT_CONTAINER = "project-container"
    SERVICE_CONTAINER = "service-container"
    BUNDLED_SERVICE_CONTAINER = "bundled-service-container"
    HELPER_CONTAINER = "helper-container"
    NGROK_TUNNEL = "ngrok-tunnel"
    PROJECT_VOLUME = "project-volume"
    SERVICE_VOLUME = "service-volume"


@dataclass(frozen=True)
class ResourceLabels:
    """Typed label set for one managed object."""

    type: ResourceType
    project_id: str | None = None
    service_id: str | None = None
    project_name: str | None = None
    managed: bool = True
    extra: Mapping[str, str] = field(default_factory=dict)

    def to_labels(self) -> dict[str, str]:
        """Serialize to the label dictionary passed to the daemon on create."""
        labels = {
            LabelKey.MANAGED.value: "true" if self.managed else "false",
            LabelKey.TYPE.value: self.type.value,
        }
        if self.project_id:
            labels[LabelKey.PROJECT_ID.value] = self.project_id
        if self.service_id:
            labels[LabelKey.SERVICE_ID.value] = self.service_id
        if self.project_name:
            labels[LabelKey.PROJECT_NAME.value] = self.project_name
        labels.update(self.extra)
        return labels

    def to_filters(self) -> list[str]:
        """
        Serialize to a ``label`` filter list with the managed label first.

        ``project_name`` and ``extra`` are descriptive only and are never
        used to filter.
        """
        filters = [
            f"{LabelKey.MANAGED.value}=true",
            f"{LabelKey.TYPE.value}={self.type.value}",
        ]
        if self.project_id:
            filters.append(f"{LabelKey.PROJECT_ID.value}={self.project_id}")
        if self.service_id:
            filters.append(f"{LabelKey.SERVICE_ID.value}={self.service_id}")
        return filters

    @classmethod
    def from_labels(cls, labels: Mapping[str, str] | None) -> "ResourceLabels | None":
        """
        Parse a daemon label dictionary.

        Returns:
            The typed label set, or None when the object is not managed or
            its type is unknown
        """
        labels = labels or {}
        if labels.get(LabelKey.MANAGED.value) != "true":
            return None
        try:
            resource_type = ResourceType(labels.get(LabelKey.TYPE.value, ""))
        except ValueError:
            return None
        return cls(
            type=resource_type,
            project_id=labels.get(LabelKey.PROJECT_ID.value),
            service_id=labels.get(LabelKey.SERVICE_ID.value),
            project_name=labels.get(LabelKey.PROJECT_NAME.value),
            extra={k: v for k, v in labels.items() if k not in FIELD_KEYS},
        )


def managed_filter() -> list[str]:
    """Filter matching every managed object regardless of type."""
    return [f"{LabelKey.MANAGED.value}=true"]


def labels_match(labels: Mapping[str, str] | None, filters: list[str]) -> bool:
    """
    Check that a label map satisfies every ``key=value`` filter.

    Args:
        labels: Labels of a Docker object
        filters: Filters as sent to the daemon

    Returns:
        True when the label map is a superset of the filters
    """
    labels = labels or {}
    for item in filters:
        key, sep, value = item.partition("=")
        if key not in labels:
            return False
        if sep and labels[key] != value:
            return False
    return True


def project_container_labels(project_id: str, project_name: str) -> ResourceLabels:
    return ResourceLabels(
        type=ResourceType.PROJECT_CONTAINER,
        project_id=project_id,
        project_name=project_name,
    )


def project_volume_labels(project_id: str, volume_name: str) -> ResourceLabels:
    return ResourceLabels(
        type=ResourceType.PROJECT_VOLUME,
        project_id=project_id,
        extra={LabelKey.VOLUME_NAME.value: volume_name},
    )


def service_container_labels(service_id: str, service_type: str) -> ResourceLabels:
    return ResourceLabels(
        type=ResourceType.SERVICE_CONTAINER,
        service_id=service_id,
        extra={LabelKey.SERVICE_TYPE.value: service_type},
    )


def service_volume_labels(service_id: str, volume_name: str) -> ResourceLabels:
    return ResourceLabels(
        type=ResourceType.SERVICE_VOLUME,
        service_id=service_id,
        extra={LabelKey.VOLUME_NAME.value: volume_name},
    )


def bundled_service_labels(
    project_id: str, project_name: str, service_id: str
) -> ResourceLabels:
    return ResourceLabels(
        type=ResourceType.BUNDLED_SERVICE_CONTAINER,
        project_id=project_id,
        project_name=project_name,
        service_id=service_id,
    )


def helper_container_labels(
    operation: str, volume_name: str | None = None, project_id: str | None = None
) -> ResourceLabels:
    extra = {LabelKey.HELPER_OPERATION.value: operation}
    if volume_name:
        extra[LabelKey.VOLUME_NAME.value] = volume_name
    return ResourceLabels(
        type=ResourceType.HELPER_CONTAINER,
        project_id=project_id,
        extra=extra,
    )
