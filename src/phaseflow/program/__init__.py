"""Program definitions: models and validated construction."""

from phaseflow.program.builder import build_program, check_references
from phaseflow.program.models import (
    ActionDescriptor,
    Invocation,
    OperationContract,
    OperationKind,
    OperationMetadata,
    Phase,
    ProgramDefinition,
    Transition,
)

__all__ = [
    "ActionDescriptor",
    "Invocation",
    "OperationContract",
    "OperationKind",
    "OperationMetadata",
    "Phase",
    "ProgramDefinition",
    "Transition",
    "build_program",
    "check_references",
]
