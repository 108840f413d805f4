"""Plug contracts and the per-session plug registry.

A plug is the host-supplied callable implementing a named operation. The
three capability variants share the `(data, argument)` calling convention:

- service: `async (data, input) -> output`
- action:  `(data, event) -> partial update`
- guard:   `(data, event) -> bool`

Any of them may be synchronous or return an awaitable.
"""

from __future__ import annotations

from collections.abc import Awaitable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Protocol

from .helpers import PlugFunction, retry, timeout


class ServicePlug(Protocol):
    def __call__(self, data: Any, input: Any, /) -> Awaitable[Any] | Any: ...


class ActionPlug(Protocol):
    def __call__(
        self, data: Any, event: Any, /
    ) -> Awaitable[Mapping[str, Any] | None] | Mapping[str, Any] | None: ...


class GuardPlug(Protocol):
    def __call__(self, data: Any, event: Any, /) -> Awaitable[bool] | bool: ...


@dataclass(frozen=True, slots=True)
class PlugSpec:
    """A plug with runtime metadata.

    `timeout` is in seconds; `retries` counts extra attempts after the first.
    """

    fn: PlugFunction
    description: str | None = None
    timeout: float | None = None
    retries: int = 0

    def resolve(self) -> PlugFunction:
        plug = self.fn
        if self.timeout is not None:
            plug = timeout(plug, self.timeout)
        if self.retries > 0:
            plug = retry(plug, attempts=self.retries + 1)
        return plug


Plug = PlugFunction | PlugSpec


def resolve_plug(name: str, plug: Plug) -> PlugFunction:
    if isinstance(plug, PlugSpec):
        return plug.resolve()
    if callable(plug):
        return plug
    raise TypeError(f"Plug '{name}' must be callable or a PlugSpec, got {type(plug).__name__}")


class PlugRegistry:
    """Name -> plug lookup, replaced wholesale on every update.

    Readers holding the previous mapping never observe a half-applied update.
    """

    def __init__(self, plugs: Mapping[str, Plug] | None = None) -> None:
        self._plugs: Mapping[str, PlugFunction] = MappingProxyType({})
        if plugs:
            self.update(plugs)

    def update(self, plugs: Mapping[str, Plug]) -> None:
        merged = dict(self._plugs)
        for name, plug in plugs.items():
            merged[name] = resolve_plug(name, plug)
        self._plugs = MappingProxyType(merged)

    def get(self, name: str) -> PlugFunction | None:
        return self._plugs.get(name)

    def names(self) -> list[str]:
        return list(self._plugs)

    def __contains__(self, name: object) -> bool:
        return name in self._plugs

    def __iter__(self) -> Iterator[str]:
        return iter(self._plugs)

    def __len__(self) -> int:
        return len(self._plugs)
