"""Declarative schema validation with model references."""

from phaseflow.schema.references import check_schema, find_required_cycles
from phaseflow.schema.validator import (
    MODEL_REF_PREFIX,
    Violation,
    ensure_valid,
    resolve_field,
    resolve_model_ref,
    type_of,
    validate,
)

__all__ = [
    "MODEL_REF_PREFIX",
    "Violation",
    "check_schema",
    "ensure_valid",
    "find_required_cycles",
    "resolve_field",
    "resolve_model_ref",
    "type_of",
    "validate",
]
