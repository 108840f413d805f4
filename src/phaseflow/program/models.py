"""Program definition models.

A program is the immutable, validated description of a workflow: its phases,
the transitions between them, the operations they reference, and the data
schemas. Raw configuration uses the interchange key names (`on`, `cond`,
`invoke.src`, `onDone`...); snake-case field names are accepted as well.

Use `build_program` (or `ProgramDefinition.from_config`) to construct one:
plain `model_validate` only checks structure, not references.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from phaseflow.schema.validator import Schema, resolve_model_ref

OperationKind = Literal["service", "action", "guard"]

InputComputer = Callable[[Any, Any], Any]

VERSION_RE = re.compile(r"^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$")


def _as_names(value: Any) -> Any:
    """`"a"` -> `("a",)`, `None` -> `()`; lists pass through for pydantic to check."""

    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return value


class StrictModel(BaseModel):
    """Frozen model with no unknown keys."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class Transition(StrictModel):
    target: str
    guard: str | None = Field(default=None, alias="cond")
    actions: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _from_target_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"target": value}
        return value

    @field_validator("actions", mode="before")
    @classmethod
    def _normalize_actions(cls, value: Any) -> Any:
        return _as_names(value)


class Invocation(StrictModel):
    """Service call started automatically when its phase is entered.

    `compute_input` is either a callable `(data, last_event) -> input` or the
    name of a transform plug registered by the host.
    """

    service: str = Field(alias="src")
    compute_input: InputComputer | str | None = Field(default=None, alias="input")
    on_success: Transition | None = Field(default=None, alias="onDone")
    on_failure: Transition | None = Field(default=None, alias="onError")


class Phase(StrictModel):
    entry_actions: tuple[str, ...] = Field(default=(), alias="entry")
    exit_actions: tuple[str, ...] = Field(default=(), alias="exit")
    transitions: dict[str, tuple[Transition, ...]] = Field(default_factory=dict, alias="on")
    invocation: Invocation | None = Field(default=None, alias="invoke")
    tags: frozenset[str] = frozenset()
    terminal: bool = False

    @model_validator(mode="before")
    @classmethod
    def _from_phase_type(cls, value: Any) -> Any:
        if not isinstance(value, Mapping) or "type" not in value:
            return value
        data = dict(value)
        kind = data.pop("type")
        if kind == "final":
            data["terminal"] = True
        elif kind not in (None, "atomic"):
            raise ValueError(f"unknown phase type {kind!r}")
        return data

    @field_validator("entry_actions", "exit_actions", mode="before")
    @classmethod
    def _normalize_hooks(cls, value: Any) -> Any:
        return _as_names(value)

    @field_validator("transitions", mode="before")
    @classmethod
    def _normalize_transitions(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            return value
        return {
            event: item if isinstance(item, list | tuple) else (item,)
            for event, item in value.items()
        }

    def targets(self) -> list[str]:
        """Distinct transition targets, in declaration order."""

        seen: dict[str, None] = {}
        for alternatives in self.transitions.values():
            for transition in alternatives:
                seen.setdefault(transition.target, None)
        return list(seen)


class OperationMetadata(StrictModel):
    intent: str | None = None
    service: str | None = None
    operation: str | None = None
    spec_ref: str | None = Field(default=None, alias="specRef")


class OperationContract(StrictModel):
    kind: OperationKind = Field(alias="type")
    description: str | None = None
    input: dict[str, dict[str, Any]] = Field(default_factory=dict)
    output: dict[str, dict[str, Any]] = Field(default_factory=dict)
    metadata: OperationMetadata | None = None


class ActionDescriptor(StrictModel):
    """User-facing metadata for an event name."""

    label: str
    description: str | None = None
    params: dict[str, dict[str, Any]] | None = None
    icon: str | None = None


class ProgramDefinition(StrictModel):
    id: str
    version: str
    initial: str | None = None
    phases: dict[str, Phase]
    models: dict[str, dict[str, dict[str, Any]]] = Field(default_factory=dict)
    data_schema: dict[str, dict[str, Any]] = Field(default_factory=dict, alias="data")
    operations: dict[str, OperationContract] = Field(default_factory=dict)
    action_meta: dict[str, ActionDescriptor] = Field(default_factory=dict, alias="actions")

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not VERSION_RE.match(value):
            raise ValueError(f"version {value!r} is not of the form MAJOR.MINOR.PATCH")
        return value

    @field_validator("phases")
    @classmethod
    def _require_phases(cls, value: dict[str, Phase]) -> dict[str, Phase]:
        if not value:
            raise ValueError("at least one phase must be declared")
        return value

    @classmethod
    def from_config(cls, raw: Mapping[str, Any]) -> ProgramDefinition:
        from phaseflow.program.builder import build_program

        return build_program(raw)

    @property
    def initial_phase(self) -> str:
        """Declared initial phase, else the first declared phase."""

        return self.initial or next(iter(self.phases))

    def get_phase(self, name: str) -> Phase | None:
        return self.phases.get(name)

    def get_operation(self, name: str) -> OperationContract | None:
        return self.operations.get(name)

    def get_all_operations(self) -> dict[str, OperationContract]:
        return dict(self.operations)

    def resolve_model_ref(self, ref: str) -> Schema | None:
        return resolve_model_ref(ref, self.models)
