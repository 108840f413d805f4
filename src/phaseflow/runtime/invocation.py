"""Invocation orchestrator: service calls attached to phases.

Each call is tagged with the session generation at the time its phase was
entered. A result that settles after the session has left that phase is
discarded instead of being applied to the wrong phase.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from phaseflow.errors import ServiceError, ValidationError
from phaseflow.program.models import Invocation
from phaseflow.schema.validator import Schema, validate

from .events import DONE_EVENT, ERROR_EVENT, make_event
from .helpers import call_plug

if TYPE_CHECKING:
    from .state_machine import TransitionEngine

logger = logging.getLogger(__name__)


class InvocationOrchestrator:
    def __init__(self, engine: TransitionEngine) -> None:
        self.engine = engine

    async def run(self, invocation: Invocation) -> None:
        rt = self.engine.runtime
        generation = rt.generation
        phase = rt.phase

        rt.loading = True
        await rt.emit("change", rt.change_payload())

        try:
            result = await self._call(invocation)
        except Exception as e:
            if rt.generation != generation:
                logger.info(
                    f"Discarding failure of '{invocation.service}': phase '{phase}' was left",
                    extra={"service": invocation.service, "phase": phase},
                )
                return
            rt.loading = False
            error = await self.engine.fail(e)
            if invocation.on_failure is not None:
                event = make_event(ERROR_EVENT, {"error": error.to_json()})
                await self.engine.take((invocation.on_failure,), event)
            return

        if rt.generation != generation:
            logger.info(
                f"Discarding result of '{invocation.service}': phase '{phase}' was left",
                extra={"service": invocation.service, "phase": phase},
            )
            return

        rt.loading = False
        if invocation.on_success is not None:
            await self.engine.take((invocation.on_success,), make_event(DONE_EVENT, {"data": result}))
        else:
            await rt.emit("change", rt.change_payload())

    async def _call(self, invocation: Invocation) -> Any:
        rt = self.engine.runtime
        service = invocation.service
        data = rt.data_copy()
        contract = rt.program.get_operation(service)
        check = rt.settings.validate_contracts and contract is not None

        service_input = await self._compute_input(invocation, data, rt.last_event)
        if check and contract.input and isinstance(service_input, Mapping):
            self._enforce(service_input, contract.input, f"input of '{service}'")

        plug = rt.plugs.get(service)
        if plug is None:
            raise ServiceError(f"No plug registered for service '{service}'", code="missing_plug")
        result = await call_plug(plug, data, service_input)

        if check and contract.output and isinstance(result, Mapping):
            self._enforce(result, contract.output, f"output of '{service}'")
        return result

    async def _compute_input(
        self, invocation: Invocation, data: dict[str, Any], last_event: dict[str, Any]
    ) -> Any:
        computer = invocation.compute_input
        if computer is None:
            return last_event
        if isinstance(computer, str):
            transform = self.engine.runtime.plugs.get(computer)
            if transform is None:
                raise ServiceError(
                    f"No plug registered for input transform '{computer}'", code="missing_plug"
                )
            return await call_plug(transform, data, last_event)
        return await call_plug(computer, data, last_event)

    def _enforce(self, value: Mapping[str, Any], schema: Schema, context: str) -> None:
        violations = validate(value, schema, self.engine.runtime.program.models)
        if violations:
            details = "; ".join(str(v) for v in violations)
            raise ServiceError(f"Contract violation for {context}: {details}", code=ValidationError.code)
