"""Session: one live execution of a program.

The session exposes the three primitives (`can`, `do`, `where`), listener
registration, plug registration, history/replay and snapshot/restore.

Dispatches are serialized: each top-level `do()` (including any chained
invocation it triggers) runs to completion before the next queued one starts.
A dispatch issued from inside a plug or listener of the same session runs
immediately as part of the enclosing unit instead, so a plug may await it
without deadlock. The enclosing unit completes only after its nested
dispatches have.

Sessions are driven by the running asyncio event loop; `do()` and `replay()`
must be called from within it.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from contextvars import ContextVar
from datetime import UTC, datetime
from functools import partial
from typing import Any

from phaseflow.config import EngineSettings
from phaseflow.errors import ValidationError
from phaseflow.introspection import Introspector
from phaseflow.program.models import ProgramDefinition
from phaseflow.schema.validator import Schema, Violation, ensure_valid

from .events import HistoryEntry
from .plugs import Plug
from .state import (
    LISTENER_KINDS,
    Listener,
    ListenerKind,
    SessionRuntime,
    SessionView,
    Snapshot,
)
from .state_machine import TransitionEngine

logger = logging.getLogger(__name__)

_ZERO_VALUES: dict[str, Any] = {
    "string": "",
    "number": 0,
    "boolean": False,
    "array": [],
    "object": {},
}

# Session whose dispatch queue is being drained in the current task.
_draining: ContextVar[Session | None] = ContextVar("phaseflow_draining_session", default=None)

Job = Callable[[], Awaitable[Any]]


def zero_value(field: Mapping[str, Any]) -> Any:
    declared = field.get("type")
    if declared is None and "$ref" in field:
        declared = "object"
    return copy.deepcopy(_ZERO_VALUES.get(declared)) if declared else None


def initialize_data(schema: Schema, overrides: Mapping[str, Any]) -> dict[str, Any]:
    """Override, else schema default, else a zero value for the declared type.

    Override keys the schema does not declare are kept as-is.
    """

    data: dict[str, Any] = {}
    for key, field in schema.items():
        if key in overrides:
            data[key] = copy.deepcopy(overrides[key])
        elif "default" in field:
            data[key] = copy.deepcopy(field["default"])
        else:
            data[key] = zero_value(field)
    for key, value in overrides.items():
        if key not in data:
            data[key] = copy.deepcopy(value)
    return data


class Session:
    def __init__(self, runtime: SessionRuntime) -> None:
        self._runtime = runtime
        self._engine = TransitionEngine(runtime)
        self._queue: deque[tuple[Job, asyncio.Future[Any] | None]] = deque()
        self._drainer: asyncio.Task[None] | None = None
        # Dispatches issued from inside the unit being drained.
        self._nested: set[asyncio.Task[Any]] = set()

    @classmethod
    def start(
        cls,
        program: ProgramDefinition,
        overrides: Mapping[str, Any] | None = None,
        *,
        settings: EngineSettings | None = None,
        plugs: Mapping[str, Plug] | None = None,
    ) -> Session:
        """Create a session in the program's initial phase.

        Raises:
            ValidationError: when a supplied override does not match the data schema.
        """

        settings = settings or EngineSettings()
        overrides = dict(overrides or {})
        if settings.validate_initial_data and overrides:
            declared = {k: v for k, v in program.data_schema.items() if k in overrides}
            ensure_valid(overrides, declared, program.models, context="initial data")

        runtime = SessionRuntime(
            program=program,
            settings=settings,
            phase=program.initial_phase,
            data=initialize_data(program.data_schema, overrides),
        )
        session = cls(runtime)
        if plugs:
            session.use(plugs)
        session._invoke_current_phase()
        logger.debug(
            f"Session started for '{program.id}' in phase '{runtime.phase}'",
            extra={"program": program.id, "phase": runtime.phase},
        )
        return session

    @classmethod
    def restore(
        cls,
        program: ProgramDefinition,
        snapshot: Snapshot | Mapping[str, Any],
        *,
        settings: EngineSettings | None = None,
        plugs: Mapping[str, Plug] | None = None,
    ) -> Session:
        """Rehydrate a session from a snapshot, bypassing data initialization.

        A version mismatch is only logged; migrating data is up to the host.
        """

        if not isinstance(snapshot, Snapshot):
            snapshot = Snapshot.from_json(snapshot)
        if snapshot.version != program.version:
            logger.warning(
                f"Restoring snapshot of version {snapshot.version} into program version "
                f"{program.version}",
                extra={"snapshot_version": snapshot.version, "program_version": program.version},
            )
        if snapshot.phase not in program.phases:
            raise ValidationError(
                [Violation(path="phase", message=f"unknown phase '{snapshot.phase}'")],
                context="snapshot",
            )

        runtime = SessionRuntime(
            program=program,
            settings=settings or EngineSettings(),
            phase=snapshot.phase,
            data=copy.deepcopy(snapshot.data),
        )
        session = cls(runtime)
        if plugs:
            session.use(plugs)
        session._invoke_current_phase()
        return session

    @property
    def program(self) -> ProgramDefinition:
        return self._runtime.program

    # Primitives

    def can(self) -> list[str]:
        """Event names accepted in the current phase (none while loading)."""

        rt = self._runtime
        phase = rt.program.phases[rt.phase]
        if rt.loading or phase.terminal:
            return []
        return list(phase.transitions)

    def do(self, event: str, payload: Any = None) -> asyncio.Future[Any]:
        """Dispatch `event`. Await the result to wait for completion; it never raises
        for dispatch, guard, action or service failures."""

        return self._submit(partial(self._engine.dispatch, event, payload))

    def where(self) -> SessionView:
        return self._runtime.view()

    def on(self, kind: ListenerKind, callback: Listener) -> None:
        self._listeners(kind).append(callback)

    def off(self, kind: ListenerKind, callback: Listener) -> None:
        listeners = self._listeners(kind)
        if callback in listeners:
            listeners.remove(callback)

    def use(self, plugs: Mapping[str, Plug]) -> None:
        """Register plugs by operation name. Later registrations win."""

        self._runtime.plugs.update(plugs)

    def is_busy(self) -> bool:
        return self._runtime.loading

    def has_tag(self, tag: str) -> bool:
        rt = self._runtime
        if tag == "loading":
            return rt.loading
        return tag in rt.program.phases[rt.phase].tags

    def introspect(self) -> Introspector:
        return Introspector(self._runtime.program)

    async def settle(self) -> None:
        """Wait until every queued dispatch (and chained invocation) has completed."""

        if _draining.get() is self:
            raise RuntimeError("settle() cannot be awaited from inside this session's plugs")
        self._kick()
        while self._drainer is not None and not self._drainer.done():
            await self._drainer
            self._kick()

    # History and snapshots

    def history(self) -> list[HistoryEntry]:
        return list(self._runtime.history)

    def replay(self, entries: Iterable[HistoryEntry | Mapping[str, Any]]) -> asyncio.Future[Any]:
        """Re-dispatch recorded events, in order, as one serialized unit."""

        recorded = [
            entry if isinstance(entry, HistoryEntry) else HistoryEntry.from_json(entry)
            for entry in entries
        ]
        return self._submit(partial(self._replay, recorded))

    def clear_history(self) -> None:
        self._runtime.history.clear()

    def snapshot(self) -> Snapshot:
        rt = self._runtime
        return Snapshot(
            version=rt.program.version,
            phase=rt.phase,
            data=rt.data_copy(),
            timestamp=datetime.now(UTC),
        )

    # Scheduling

    def _listeners(self, kind: str) -> list[Listener]:
        if kind not in LISTENER_KINDS:
            raise ValueError(f"Unknown listener kind '{kind}', expected one of {LISTENER_KINDS}")
        return self._runtime.listeners[kind]

    async def _replay(self, entries: list[HistoryEntry]) -> None:
        for entry in entries:
            await self._engine.dispatch(entry.event_type, entry.payload)

    def _invoke_current_phase(self) -> None:
        rt = self._runtime
        invocation = rt.program.phases[rt.phase].invocation
        if invocation is None:
            return
        rt.loading = True
        self._queue.append((partial(self._engine.invocations.run, invocation), None))
        self._kick()

    def _submit(self, job: Job) -> asyncio.Future[Any]:
        loop = asyncio.get_running_loop()
        if _draining.get() is self and self._drainer is not None and not self._drainer.done():
            task = loop.create_task(job())
            self._nested.add(task)
            task.add_done_callback(self._nested.discard)
            return task
        future: asyncio.Future[Any] = loop.create_future()
        self._queue.append((job, future))
        self._kick()
        return future

    def _kick(self) -> None:
        if not self._queue or (self._drainer is not None and not self._drainer.done()):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Started outside an event loop; the queue drains on the first do()/settle().
            return
        self._drainer = loop.create_task(self._drain())

    async def _drain(self) -> None:
        _draining.set(self)
        while self._queue:
            job, future = self._queue.popleft()
            result: Any = None
            try:
                result = await job()
                # The unit is complete only once every nested dispatch it issued is.
                while self._nested:
                    await asyncio.gather(*self._nested, return_exceptions=True)
            finally:
                if future is not None and not future.done():
                    future.set_result(result)


def start(
    program: ProgramDefinition,
    overrides: Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> Session:
    return Session.start(program, overrides, **kwargs)


def restore(
    program: ProgramDefinition, snapshot: Snapshot | Mapping[str, Any], **kwargs: Any
) -> Session:
    return Session.restore(program, snapshot, **kwargs)
