"""Result types for cbci tasks and jobs."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, Literal, TypeVar

from pydantic import BaseModel, PrivateAttr

if TYPE_CHECKING:
    from .context import ArtifactInfo

T = TypeVar("T")


class Result(BaseModel, Generic[T]):
    """
    Result of a task execution.

    Use Ok(value) or Err(message) to construct results.
    """

    status: Literal["success", "failure"] = "success"
    error: str | None = None
    traceback: str | None = None
    _value: T | None = PrivateAttr(default=None)
    _outputs: dict[str, str] = PrivateAttr(default_factory=dict)
    _artifacts: dict[str, ArtifactInfo] = PrivateAttr(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        """True if the task succeeded."""
        return self.status == "success"

    @property
    def failed(self) -> bool:
        """True if the task failed."""
        return self.status == "failure"

    @property
    def outputs(self) -> dict[str, str]:
        """Outputs set via set_output() while the task ran."""
        return self._outputs

    @property
    def artifacts(self) -> dict[str, ArtifactInfo]:
        """Artifacts published via save_artifact() while the task ran."""
        return self._artifacts

    def value(self) -> T:
        """
        Get the result value.

        Raises RuntimeError if the result is a failure.
        """
        if self.failed:
            raise RuntimeError(f"Attempted to get value from a failed result: {self.error}")
        return self._value  # type: ignore[return-value]

    def value_or(self, default: T) -> T:
        """Get the value, or return a default if the result is a failure or has no value."""
        if self.ok and self._value is not None:
            return self._value
        return default


def Ok(value: T) -> Result[T]:
    """Create a successful result with the given value."""
    result = Result[T](status="success")
    object.__setattr__(result, "_value", value)
    return result


def Err(error: str, *, traceback: str | None = None) -> Result[Any]:
    """Create a failed result with an error message."""
    return Result(status="failure", error=error, traceback=traceback)


class JobStatus(str, Enum):
    """Terminal result of a job, using the orchestrator's vocabulary."""

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"

    @classmethod
    def parse(cls, value: str | JobStatus) -> JobStatus:
        """Parse a status string such as ``needs.build.result``."""
        if isinstance(value, JobStatus):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            known = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown job status '{value}'. Expected one of: {known}") from None

    def __str__(self) -> str:
        return self.value
