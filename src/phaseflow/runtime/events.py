from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

INIT_EVENT = "INIT"
DONE_EVENT = "DONE"
ERROR_EVENT = "ERROR"


def make_event(event_type: str, payload: Any = None) -> dict[str, Any]:
    """Build the event handed to guards and actions.

    Mapping payloads are flattened into the event (`{"type": ..., **payload}`);
    any other payload is carried under the `payload` key.
    """

    event: dict[str, Any] = {}
    if isinstance(payload, Mapping):
        event.update(copy.deepcopy(dict(payload)))
    elif payload is not None:
        event["payload"] = copy.deepcopy(payload)
    event["type"] = event_type
    return event


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One dispatch, recorded before its legality is evaluated."""

    event_type: str
    payload: Any
    phase: str
    timestamp: datetime

    def to_json(self) -> dict[str, object]:
        return {
            "type": self.event_type,
            "payload": copy.deepcopy(self.payload),
            "phase": self.phase,
            "timestamp": self.timestamp.isoformat(),
        }

    @staticmethod
    def from_json(obj: Mapping[str, Any]) -> HistoryEntry:
        raw_ts = obj.get("timestamp")
        timestamp = (
            datetime.fromisoformat(raw_ts) if isinstance(raw_ts, str) else datetime.now(UTC)
        )
        return HistoryEntry(
            event_type=str(obj["type"]),
            payload=copy.deepcopy(obj.get("payload")),
            phase=str(obj.get("phase", "")),
            timestamp=timestamp,
        )
