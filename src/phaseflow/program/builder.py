"""Program construction: structural parsing plus reference checks.

Construction is all-or-nothing. Every violation found is reported together in
a single ConfigurationError.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from phaseflow.errors import ConfigurationError
from phaseflow.schema.references import check_schema, find_required_cycles

from .models import OperationKind, ProgramDefinition, Transition

logger = logging.getLogger(__name__)


def _format_pydantic_error(error: Mapping[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = str(error.get("msg", "invalid value"))
    return f"{location}: {message}" if location else message


def build_program(raw: Mapping[str, Any]) -> ProgramDefinition:
    """Parse and validate a raw program configuration.

    Raises:
        ConfigurationError: with every structural and reference violation found.
    """

    try:
        program = ProgramDefinition.model_validate(raw)
    except PydanticValidationError as e:
        raise ConfigurationError([_format_pydantic_error(err) for err in e.errors()]) from e

    problems = check_references(program)
    if problems:
        raise ConfigurationError(problems)

    logger.debug(
        f"Program '{program.id}' built",
        extra={"program": program.id, "version": program.version, "phases": len(program.phases)},
    )
    return program


class _ReferenceChecker:
    def __init__(self, program: ProgramDefinition) -> None:
        self.program = program
        self.problems: list[str] = []

    def operation(self, name: str, kind: OperationKind, where: str) -> None:
        contract = self.program.operations.get(name)
        if contract is None:
            self.problems.append(f"{where}: unknown operation '{name}'")
        elif contract.kind != kind:
            self.problems.append(
                f"{where}: operation '{name}' is a {contract.kind}, expected a {kind}"
            )

    def phase(self, name: str, where: str) -> None:
        if name not in self.program.phases:
            self.problems.append(f"{where}: unknown phase '{name}'")

    def transition(self, transition: Transition, where: str) -> None:
        self.phase(transition.target, f"{where}.target")
        if transition.guard is not None:
            self.operation(transition.guard, "guard", f"{where}.guard")
        for index, action in enumerate(transition.actions):
            self.operation(action, "action", f"{where}.actions[{index}]")


def check_references(program: ProgramDefinition) -> list[str]:
    """Return every unresolved phase, operation or model reference of `program`."""

    checker = _ReferenceChecker(program)

    if program.initial is not None:
        checker.phase(program.initial, "initial")

    for phase_name, phase in program.phases.items():
        where = f"phases.{phase_name}"
        for index, action in enumerate(phase.entry_actions):
            checker.operation(action, "action", f"{where}.entry[{index}]")
        for index, action in enumerate(phase.exit_actions):
            checker.operation(action, "action", f"{where}.exit[{index}]")
        for event, alternatives in phase.transitions.items():
            if not alternatives:
                checker.problems.append(f"{where}.on.{event}: no transition declared")
            for index, transition in enumerate(alternatives):
                checker.transition(transition, f"{where}.on.{event}[{index}]")
        invocation = phase.invocation
        if invocation is not None:
            checker.operation(invocation.service, "service", f"{where}.invoke.src")
            if invocation.on_success is not None:
                checker.transition(invocation.on_success, f"{where}.invoke.onDone")
            if invocation.on_failure is not None:
                checker.transition(invocation.on_failure, f"{where}.invoke.onError")

    models = program.models
    problems = checker.problems
    problems.extend(check_schema(program.data_schema, models, "data"))
    for model_name, model in models.items():
        problems.extend(check_schema(model, models, f"models.{model_name}"))
    for op_name, contract in program.operations.items():
        problems.extend(check_schema(contract.input, models, f"operations.{op_name}.input"))
        problems.extend(check_schema(contract.output, models, f"operations.{op_name}.output"))
    for action_name, descriptor in program.action_meta.items():
        if descriptor.params:
            problems.extend(check_schema(descriptor.params, models, f"actions.{action_name}.params"))
    for cycle in find_required_cycles(models):
        problems.append(f"models: circular required reference {' -> '.join(cycle)}")

    return problems
