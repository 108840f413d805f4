"""Session runtime state and the value types it exposes."""

from __future__ import annotations

import copy
import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from phaseflow.config import EngineSettings
from phaseflow.program.models import ProgramDefinition

from .events import INIT_EVENT, HistoryEntry, make_event
from .plugs import PlugRegistry

logger = logging.getLogger(__name__)

ListenerKind = Literal["error", "done", "change"]
LISTENER_KINDS: tuple[ListenerKind, ...] = ("error", "done", "change")

Listener = Callable[[Any], Any]


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    message: str
    code: str | int | None = None

    @staticmethod
    def from_exception(exc: BaseException) -> ErrorInfo:
        code = getattr(exc, "code", None)
        if not isinstance(code, str | int):
            code = None
        return ErrorInfo(message=str(exc) or type(exc).__name__, code=code)

    def to_json(self) -> dict[str, object]:
        return {"message": self.message, "code": self.code}


@dataclass(frozen=True, slots=True)
class SessionView:
    """What `Session.where()` returns. `data` is a private copy."""

    phase: str
    data: dict[str, Any]
    loading: bool
    error: ErrorInfo | None


@dataclass(frozen=True, slots=True)
class Snapshot:
    version: str
    phase: str
    data: dict[str, Any]
    timestamp: datetime

    def to_json(self) -> dict[str, object]:
        return {
            "version": self.version,
            "phase": self.phase,
            "data": copy.deepcopy(self.data),
            "timestamp": self.timestamp.isoformat(),
        }

    @staticmethod
    def from_json(obj: Mapping[str, Any]) -> Snapshot:
        raw_ts = obj.get("timestamp")
        timestamp = (
            datetime.fromisoformat(raw_ts) if isinstance(raw_ts, str) else datetime.now(UTC)
        )
        data = obj.get("data")
        return Snapshot(
            version=str(obj.get("version", "")),
            phase=str(obj["phase"]),
            data=copy.deepcopy(dict(data)) if isinstance(data, Mapping) else {},
            timestamp=timestamp,
        )


def merge_update(data: dict[str, Any], update: Any, source: str) -> dict[str, Any]:
    """Copy-on-write merge of an action's partial update."""

    if update is None:
        return data
    if not isinstance(update, Mapping):
        logger.warning(
            f"Action '{source}' returned {type(update).__name__}, expected a mapping; ignored",
            extra={"action": source},
        )
        return data
    merged = dict(data)
    merged.update(copy.deepcopy(dict(update)))
    return merged


@dataclass
class SessionRuntime:
    """Mutable state owned by exactly one Session.

    `generation` increases every time the phase is (re-)entered and is used to
    recognise invocation results that arrive after the phase has moved on.
    """

    program: ProgramDefinition
    settings: EngineSettings
    phase: str
    data: dict[str, Any]
    loading: bool = False
    error: ErrorInfo | None = None
    last_event: dict[str, Any] = field(default_factory=lambda: make_event(INIT_EVENT))
    generation: int = 0
    plugs: PlugRegistry = field(default_factory=PlugRegistry)
    history: list[HistoryEntry] = field(default_factory=list)
    listeners: dict[str, list[Listener]] = field(
        default_factory=lambda: {kind: [] for kind in LISTENER_KINDS}
    )

    def data_copy(self) -> dict[str, Any]:
        return copy.deepcopy(self.data)

    def view(self) -> SessionView:
        return SessionView(
            phase=self.phase, data=self.data_copy(), loading=self.loading, error=self.error
        )

    def change_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"phase": self.phase, "data": self.data_copy()}
        if self.loading:
            payload["loading"] = True
        return payload

    async def emit(self, kind: ListenerKind, payload: Any) -> None:
        for callback in list(self.listeners[kind]):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"'{kind}' listener failed", extra={"listener_kind": kind})
