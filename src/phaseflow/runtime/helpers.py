"""Plug combinators and built-in value plugs.

Every combinator accepts synchronous or asynchronous plugs and returns an
asynchronous plug with the usual `(data, event)` signature.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from phaseflow.errors import ServiceError

logger = logging.getLogger(__name__)

PlugFunction = Callable[[Any, Any], Any]


async def call_plug(plug: PlugFunction, data: Any, event: Any) -> Any:
    """Invoke a plug and await its result if it returned an awaitable."""

    result = plug(data, event)
    if inspect.isawaitable(result):
        result = await result
    return result


def assign(updater: Callable[[Any, Any], Mapping[str, Any] | None]) -> PlugFunction:
    """Build an action plug from a function returning a partial data update.

    The session merges the returned mapping into a fresh copy of its data; the
    `data` argument handed to the updater is never the live session data.
    """

    async def plug(data: Any, event: Any) -> dict[str, Any]:
        updates = await call_plug(updater, data, event)
        return dict(updates or {})

    return plug


def compose(*plugs: PlugFunction) -> PlugFunction:
    """Chain plugs right-to-left; each receives the previous result as its event."""

    async def plug(data: Any, event: Any) -> Any:
        result = event
        for step in reversed(plugs):
            result = await call_plug(step, data, result)
        return result

    return plug


def pipe(*plugs: PlugFunction) -> PlugFunction:
    """Chain plugs left-to-right; each receives the previous result as its event."""

    async def plug(data: Any, event: Any) -> Any:
        result = event
        for step in plugs:
            result = await call_plug(step, data, result)
        return result

    return plug


def fallback(primary: PlugFunction, secondary: PlugFunction) -> PlugFunction:
    async def plug(data: Any, event: Any) -> Any:
        try:
            return await call_plug(primary, data, event)
        except Exception as e:
            logger.warning(f"Primary plug failed, using fallback: {e}")
            return await call_plug(secondary, data, event)

    return plug


def retry(
    target: PlugFunction, attempts: int = 3, delay: float = 1.0, backoff: float = 2.0
) -> PlugFunction:
    """Retry `target` up to `attempts` times, sleeping `delay * backoff**n` between tries."""

    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    async def plug(data: Any, event: Any) -> Any:
        current_delay = delay
        for attempt in range(1, attempts):
            try:
                return await call_plug(target, data, event)
            except Exception as e:
                logger.warning(
                    f"Attempt {attempt} failed, retrying in {current_delay}s: {e}",
                    extra={"attempt": attempt},
                )
                await asyncio.sleep(current_delay)
                current_delay *= backoff
        return await call_plug(target, data, event)

    return plug


def timeout(target: PlugFunction, seconds: float) -> PlugFunction:
    async def plug(data: Any, event: Any) -> Any:
        try:
            return await asyncio.wait_for(call_plug(target, data, event), seconds)
        except TimeoutError as e:
            raise ServiceError(f"Timeout after {seconds}s", code="timeout") from e

    return plug


def _default_cache_key(_data: Any, event: Any) -> str:
    return json.dumps(event, sort_keys=True, default=repr)


def cache(
    target: PlugFunction,
    ttl: float = 60.0,
    key: Callable[[Any, Any], str] = _default_cache_key,
    maxsize: int | None = 256,
) -> PlugFunction:
    """Memoize results per `key(data, event)` for `ttl` seconds.

    Expired entries are dropped on every write. When `maxsize` entries are
    held, the oldest one is evicted first.
    """

    if maxsize is not None and maxsize < 1:
        raise ValueError("maxsize must be >= 1")

    entries: dict[str, tuple[Any, float]] = {}

    async def plug(data: Any, event: Any) -> Any:
        cache_key = key(data, event)
        hit = entries.get(cache_key)
        now = time.monotonic()
        if hit is not None and now < hit[1]:
            return hit[0]
        result = await call_plug(target, data, event)
        for expired in [k for k, (_, expires_at) in entries.items() if expires_at <= now]:
            del entries[expired]
        entries.pop(cache_key, None)
        if maxsize is not None and len(entries) >= maxsize:
            del entries[next(iter(entries))]
        entries[cache_key] = (result, now + ttl)
        return result

    return plug


def memory(value: Any) -> PlugFunction:
    """Plug returning a static value, or the result of calling a zero-argument factory."""

    async def plug(_data: Any, _event: Any) -> Any:
        return value() if callable(value) else value

    return plug


def mock(value: Any, delay: float = 0.0) -> PlugFunction:
    """Plug returning `value` after an optional delay (seconds)."""

    async def plug(_data: Any, _event: Any) -> Any:
        if delay > 0:
            await asyncio.sleep(delay)
        return value

    return plug
