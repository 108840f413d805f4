"""phaseflow: a declarative workflow interpreter.

A program (phases, guarded transitions, actions and service invocations)
is validated once, then executed as a live session that answers three
questions:
- what can happen now (`Session.can`)
- make something happen (`Session.do`)
- what is the current state (`Session.where`)
"""

__version__ = "0.1.0"

from phaseflow.config import EngineSettings
from phaseflow.errors import (
    ConfigurationError,
    DispatchError,
    GuardError,
    PhaseflowError,
    ServiceError,
    ValidationError,
)
from phaseflow.introspection import ActionInfo, Introspector, PlugValidationResult
from phaseflow.program import ProgramDefinition, build_program
from phaseflow.runtime import (
    ErrorInfo,
    HistoryEntry,
    PlugSpec,
    Session,
    SessionView,
    Snapshot,
    restore,
    start,
)

__all__ = [
    "__version__",
    "ActionInfo",
    "ConfigurationError",
    "DispatchError",
    "EngineSettings",
    "ErrorInfo",
    "GuardError",
    "HistoryEntry",
    "Introspector",
    "PhaseflowError",
    "PlugSpec",
    "PlugValidationResult",
    "ProgramDefinition",
    "ServiceError",
    "Session",
    "SessionView",
    "Snapshot",
    "ValidationError",
    "build_program",
    "restore",
    "start",
]
