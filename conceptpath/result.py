"""
Tagged result types returned by the core.

Every core operation returns ``Ok`` or one of the failure variants below
instead of raising; the caller (CLI, API layer) decides how to surface
them.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, Tuple, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound:
    """An unknown concept, course, or goal reference."""

    kind: str  # concept | course | goal
    ref: str
    message: str = ""

    def __str__(self) -> str:
        return self.message or f"{self.kind} '{self.ref}' not found"


@dataclass(frozen=True)
class CycleDetected:
    """The prerequisite graph is not acyclic within the requested scope."""

    cycle: Tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        if not self.cycle:
            return "prerequisite cycle detected"
        return "prerequisite cycle detected: " + " → ".join(
            self.cycle + self.cycle[:1]
        )


@dataclass(frozen=True)
class InvalidTransition:
    """A progress event that the current state does not allow."""

    reason: str
    concept_id: Optional[str] = None

    def __str__(self) -> str:
        if self.concept_id:
            return f"invalid transition for concept '{self.concept_id}': {self.reason}"
        return f"invalid transition: {self.reason}"


@dataclass(frozen=True)
class ConcurrencyConflict:
    """A progress write collided with a concurrent update."""

    user_id: str
    course_id: str
    expected_version: int
    actual_version: int

    def __str__(self) -> str:
        return (
            f"progress for user '{self.user_id}' / course '{self.course_id}' "
            f"changed (expected version {self.expected_version}, "
            f"found {self.actual_version})"
        )


Failure = Union[NotFound, CycleDetected, InvalidTransition, ConcurrencyConflict]
Result = Union[Ok[Any], Failure]


def is_ok(result: Any) -> bool:
    """Return ``True`` if *result* is an ``Ok``."""
    return isinstance(result, Ok)
