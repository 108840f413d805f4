"""Transition engine.

Given the current phase and a dispatched event, select the first transition
whose guard passes and commit it:

1. exit actions of the current phase
2. transition actions, in declared order (each sees the previous updates)
3. phase change (error cleared, last event recorded)
4. entry actions of the new phase
5. `change` notification, then `done` when the new phase is terminal
6. hand-off to the invocation orchestrator when the new phase invokes a service

Nothing here raises to the caller: illegal events and failing guards are
logged, failing actions are captured into the session error.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from phaseflow.errors import DispatchError, GuardError, ServiceError
from phaseflow.program.models import Transition

from .events import HistoryEntry, make_event
from .helpers import call_plug
from .invocation import InvocationOrchestrator
from .state import ErrorInfo, SessionRuntime, merge_update

logger = logging.getLogger(__name__)


class TransitionEngine:
    def __init__(self, runtime: SessionRuntime) -> None:
        self.runtime = runtime
        self.invocations = InvocationOrchestrator(self)

    async def dispatch(self, event_type: str, payload: Any = None) -> bool:
        """Handle one external event. Returns True when a transition was committed."""

        rt = self.runtime
        rt.history.append(
            HistoryEntry(
                event_type=event_type,
                payload=copy.deepcopy(payload),
                phase=rt.phase,
                timestamp=datetime.now(UTC),
            )
        )

        phase = rt.program.phases[rt.phase]
        if phase.terminal:
            self._reject(event_type, f"phase '{rt.phase}' is terminal")
            return False
        alternatives = phase.transitions.get(event_type)
        if not alternatives:
            self._reject(event_type, f"event '{event_type}' is not available in phase '{rt.phase}'")
            return False

        return await self.take(alternatives, make_event(event_type, payload))

    async def take(self, alternatives: Sequence[Transition], event: dict[str, Any]) -> bool:
        selected = await self.select(alternatives, event)
        if selected is None:
            self._reject(str(event.get("type")), "no guarded transition matched")
            return False
        return await self.commit(selected, event)

    async def select(
        self, alternatives: Sequence[Transition], event: dict[str, Any]
    ) -> Transition | None:
        """First alternative whose guard is absent or passes; later guards are not run."""

        for transition in alternatives:
            if transition.guard is None or await self._check_guard(transition.guard, event):
                return transition
        return None

    async def commit(self, transition: Transition, event: dict[str, Any]) -> bool:
        rt = self.runtime
        source = rt.program.phases[rt.phase]
        target = rt.program.phases[transition.target]

        working = rt.data
        try:
            for name in source.exit_actions:
                working = await self._apply_action(name, working, event)
            for name in transition.actions:
                working = await self._apply_action(name, working, event)
        except Exception as e:
            await self.fail(e)
            return False

        previous = rt.phase
        rt.phase = transition.target
        rt.data = working
        rt.error = None
        rt.loading = False
        rt.last_event = event
        rt.generation += 1
        logger.debug(
            f"Transition {previous} -> {rt.phase}",
            extra={"event": event.get("type"), "from_phase": previous, "to_phase": rt.phase},
        )

        entered = True
        for name in target.entry_actions:
            try:
                rt.data = await self._apply_action(name, rt.data, event)
            except Exception as e:
                await self.fail(e)
                entered = False
                break

        await rt.emit("change", rt.change_payload())
        if target.terminal:
            await rt.emit("done", rt.data_copy())

        if entered and target.invocation is not None:
            await self.invocations.run(target.invocation)
        return True

    async def fail(self, exc: BaseException) -> ErrorInfo:
        rt = self.runtime
        error = ErrorInfo.from_exception(exc)
        rt.error = error
        logger.warning(
            f"Session error in phase '{rt.phase}': {error.message}",
            extra={"phase": rt.phase, "code": error.code},
        )
        await rt.emit("error", error)
        return error

    async def _apply_action(
        self, name: str, data: dict[str, Any], event: dict[str, Any]
    ) -> dict[str, Any]:
        plug = self.runtime.plugs.get(name)
        if plug is None:
            raise ServiceError(f"No plug registered for action '{name}'", code="missing_plug")
        update = await call_plug(plug, copy.deepcopy(data), event)
        return merge_update(data, update, name)

    async def _check_guard(self, name: str, event: dict[str, Any]) -> bool:
        rt = self.runtime
        try:
            plug = rt.plugs.get(name)
            if plug is None:
                raise GuardError(f"No plug registered for guard '{name}'")
            return bool(await call_plug(plug, rt.data_copy(), event))
        except Exception as e:
            logger.warning(
                f"Guard '{name}' failed, treating as false: {e}",
                extra={"guard": name, "code": GuardError.code},
            )
            return False

    def _reject(self, event_type: str, reason: str) -> None:
        logger.warning(
            f"Dispatch ignored: {reason}",
            extra={"event": event_type, "phase": self.runtime.phase, "code": DispatchError.code},
        )
