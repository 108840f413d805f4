"""Error hierarchy for program construction and session execution.

Only configuration and validation errors are raised to callers. Dispatch,
guard and service errors are captured by the session and surfaced through
`Session.where().error`, the `error` notification, or log diagnostics.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from phaseflow.schema.validator import Violation


class PhaseflowError(Exception):
    code: str = "phaseflow_error"


class ConfigurationError(PhaseflowError):
    """A program definition is inconsistent (unresolved references, bad version...)."""

    code = "configuration_error"

    def __init__(self, violations: Sequence[str]) -> None:
        self.violations: list[str] = list(violations)
        super().__init__(
            f"Invalid program configuration ({len(self.violations)} violation(s)): "
            + "; ".join(self.violations)
        )


class ValidationError(PhaseflowError):
    """A value does not conform to its declared schema."""

    code = "validation_failed"

    def __init__(self, violations: Sequence[Violation], context: str = "value") -> None:
        self.violations: list[Violation] = list(violations)
        self.context = context
        details = "; ".join(str(v) for v in self.violations)
        super().__init__(f"Validation failed for {context}: {details}")


class DispatchError(PhaseflowError):
    code = "dispatch_error"


class GuardError(PhaseflowError):
    code = "guard_error"


class ServiceError(PhaseflowError):
    """A service or action plug failed, or no plug is registered for an operation."""

    code = "service_error"

    def __init__(self, message: str, code: str | int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code  # type: ignore[assignment]
