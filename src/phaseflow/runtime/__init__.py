"""Session runtime: transition engine, invocation orchestrator and plugs."""

from phaseflow.runtime.events import HistoryEntry, make_event
from phaseflow.runtime.plugs import Plug, PlugRegistry, PlugSpec
from phaseflow.runtime.session import Session, restore, start
from phaseflow.runtime.state import ErrorInfo, SessionView, Snapshot

__all__ = [
    "ErrorInfo",
    "HistoryEntry",
    "Plug",
    "PlugRegistry",
    "PlugSpec",
    "Session",
    "SessionView",
    "Snapshot",
    "make_event",
    "restore",
    "start",
]
