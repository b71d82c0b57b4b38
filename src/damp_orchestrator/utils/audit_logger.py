"""Structured audit logging for user-initiated lifecycle actions."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from damp_orchestrator.utils.logging import get_logger


class AuditEventType(str, Enum):
    """Types of audit events."""

    # Service events
    SERVICE_INSTALL = "service_install"
    SERVICE_UNINSTALL = "service_uninstall"
    SERVICE_START = "service_start"
    SERVICE_STOP = "service_stop"
    SERVICE_RESTART = "service_restart"
    DATABASE_DUMP = "database_dump"
    DATABASE_RESTORE = "database_restore"

    # Project events
    PROJECT_CREATE = "project_create"
    PROJECT_UPDATE = "project_update"
    PROJECT_DELETE = "project_delete"

    # Resource events
    RESOURCE_DELETE = "resource_delete"
    RESOURCE_PRUNE = "resource_prune"

    # Certificate events
    CERTIFICATE_INSTALL = "certificate_install"


class AuditLogger:
    """Structured audit logger for tracking lifecycle actions."""

    SENSITIVE_KEYS = {"password", "token", "secret", "key", "credentials", "private"}

    def __init__(self) -> None:
        """Initialize the audit logger."""
        self._logger = get_logger("audit")
        # Audit events are always emitted regardless of the root level
        self._logger.setLevel(logging.INFO)

    def log_event(
        self,
        event_type: AuditEventType,
        target: str | None = None,
        success: bool = True,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log an audit event.

        Args:
            event_type: Type of event being logged
            target: Service ID, project ID or resource ID acted upon
            success: Whether the action succeeded
            details: Additional event-specific details
        """
        event: dict[str, Any] = {
            "event_time": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type.value,
            "success": success,
        }
        if target:
            event["target"] = target

        sanitized = self._sanitize_details(details or {})
        if sanitized:
            event["details"] = sanitized

        self._logger.info("audit_event", extra=event)

    def _sanitize_details(self, details: dict[str, Any]) -> dict[str, Any]:
        """
        Redact credential-like values (bundled service passwords, keys).

        Args:
            details: Raw event details

        Returns:
            Sanitized details with sensitive fields redacted
        """
        sanitized: dict[str, Any] = {}
        for key, value in details.items():
            if any(word in key.lower() for word in self.SENSITIVE_KEYS):
                sanitized[key] = "***REDACTED***"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_details(value)
            elif isinstance(value, list):
                sanitized[key] = [
                    self._sanitize_details(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                sanitized[key] = value
        return sanitized
