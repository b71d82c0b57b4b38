"""Result values returned across the state manager boundary."""

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Outcome of a user-facing operation.

    State managers never let daemon errors escape; they return a failed
    ``Result`` carrying a human-readable message instead.
    """

    success: bool
    data: T | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> "Result[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "Result[T]":
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        data = self.data
        if hasattr(data, "to_dict"):
            data = data.to_dict()
        return {"success": self.success, "data": data, "error": self.error}


@dataclass
class BatchResult:
    """Per-item outcome of a batch operation; partial success is expected."""

    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed

    def merge(self, other: "BatchResult") -> "BatchResult":
        return BatchResult(
            deleted=self.deleted + other.deleted,
            failed=self.failed + other.failed,
            errors={**self.errors, **other.errors},
        )

    def to_dict(self) -> dict[str, Any]:
        return {"deleted": list(self.deleted), "failed": list(self.failed), "errors": dict(self.errors)}


@dataclass
class HookContext:
    """Input handed to a post-install hook."""

    service_id: str
    container_id: str
    custom_config: dict[str, Any] | None = None


@dataclass
class HookResult:
    """Outcome of a post-install hook; failures never undo the install."""

    success: bool
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
