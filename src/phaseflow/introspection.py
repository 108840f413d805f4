"""Read-only graph queries over a program's phase table.

Nodes are phases; edges are declared transition targets. For `path_exists`
an invocation's `onDone` target also counts as an edge. All traversals are
iterative with explicit stacks.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from phaseflow.program.models import OperationContract, Phase, ProgramDefinition
from phaseflow.schema.validator import Schema

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActionInfo:
    name: str
    phase: str
    label: str
    params: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class PlugValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class Introspector:
    def __init__(self, program: ProgramDefinition) -> None:
        self.program = program

    def all_paths(self) -> list[list[str]]:
        """Every path from the initial phase to a phase that is terminal or has
        no outgoing transitions.

        A phase already on the current path is not revisited, so cycles are
        cut; it becomes available again once the search backtracks past it.
        """

        phases = self.program.phases
        paths: list[list[str]] = []
        path: list[str] = []
        on_path: set[str] = set()
        stack: list[Iterator[str]] = []

        def enter(name: str) -> None:
            if name in on_path:
                return
            phase = phases[name]
            targets = phase.targets()
            if phase.terminal or not targets:
                paths.append([*path, name])
                return
            path.append(name)
            on_path.add(name)
            stack.append(iter(targets))

        enter(self.program.initial_phase)
        while stack:
            target = next(stack[-1], None)
            if target is None:
                stack.pop()
                on_path.discard(path.pop())
                continue
            enter(target)
        return paths

    def all_actions(self) -> list[ActionInfo]:
        actions: list[ActionInfo] = []
        for phase_name, phase in self.program.phases.items():
            for event in phase.transitions:
                meta = self.program.action_meta.get(event)
                actions.append(
                    ActionInfo(
                        name=event,
                        phase=phase_name,
                        label=meta.label if meta is not None else event,
                        params=dict(meta.params) if meta is not None and meta.params else None,
                    )
                )
        return actions

    def get_phase(self, name: str) -> Phase | None:
        return self.program.get_phase(name)

    def can_reach(self, source: str, target: str) -> bool:
        if source == target:
            return True
        visited = {source}
        stack = [source]
        while stack:
            phase = self.program.get_phase(stack.pop())
            if phase is None:
                continue
            for nxt in phase.targets():
                if nxt == target:
                    return True
                if nxt not in visited:
                    visited.add(nxt)
                    stack.append(nxt)
        return False

    def path_exists(self, sequence: Sequence[str]) -> bool:
        for current, nxt in zip(sequence, sequence[1:]):
            phase = self.program.get_phase(current)
            if phase is None:
                return False
            if nxt in phase.targets():
                continue
            invocation = phase.invocation
            if (
                invocation is not None
                and invocation.on_success is not None
                and invocation.on_success.target == nxt
            ):
                continue
            return False
        return True

    def get_operation(self, name: str) -> OperationContract | None:
        return self.program.get_operation(name)

    def get_all_operations(self) -> dict[str, OperationContract]:
        return self.program.get_all_operations()

    def resolve_model_ref(self, ref: str) -> Schema | None:
        return self.program.resolve_model_ref(ref)

    def resolve_spec_ref(self, ref: str) -> str:
        # External spec documents are resolved by the host.
        return ref

    def validate_plugs(self, plugs: Mapping[str, Any]) -> PlugValidationResult:
        """Every operation needs a plug; plugs without an operation only warn."""

        errors = [
            f'Missing plug for operation "{name}"'
            for name in self.program.operations
            if plugs.get(name) is None
        ]
        warnings = [
            f'Plug "{name}" has no operation contract - will not be validated'
            for name in plugs
            if name not in self.program.operations
        ]
        for warning in warnings:
            logger.warning(warning)
        return PlugValidationResult(valid=not errors, errors=errors, warnings=warnings)
