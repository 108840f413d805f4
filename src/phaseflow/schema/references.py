"""Static checks over schema definitions (no values involved).

Used at program construction to make sure every `$ref` resolves, declared
types and rule values are well-formed, and no model requires itself.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from typing import Any

from .validator import BOUND_RULES, SCHEMA_TYPES, Models, Schema, is_number, model_name, type_of


def iter_fields(schema: Schema, path: str = "") -> Iterator[tuple[str, Mapping[str, Any]]]:
    """Yield `(path, field)` for every field of `schema`, descending into inline
    `items` and `properties` (but not through `$ref`)."""

    stack: list[tuple[str, Mapping[str, Any]]] = [
        (f"{path}.{key}" if path else key, field) for key, field in schema.items()
    ]
    stack.reverse()
    while stack:
        field_path, field = stack.pop()
        yield field_path, field
        if not isinstance(field, Mapping):
            continue
        nested: list[tuple[str, Mapping[str, Any]]] = []
        items = field.get("items")
        if isinstance(items, Mapping):
            nested.append((f"{field_path}[]", items))
        properties = field.get("properties")
        if isinstance(properties, Mapping):
            nested.extend((f"{field_path}.{key}", sub) for key, sub in properties.items())
        stack.extend(reversed(nested))


def check_schema(schema: Schema, models: Models, where: str) -> list[str]:
    """Return configuration violations for one schema."""

    problems: list[str] = []
    for field_path, field in iter_fields(schema):
        location = f"{where}.{field_path}"
        if not isinstance(field, Mapping):
            problems.append(f"{location}: field definition must be a mapping")
            continue
        ref = field.get("$ref")
        if ref is not None and model_name(str(ref)) not in models:
            problems.append(f"{location}: model reference not found: {ref}")
        declared = field.get("type")
        if declared is not None and declared not in SCHEMA_TYPES:
            problems.append(f"{location}: unknown type {declared!r}")
        for rule in BOUND_RULES:
            bound = field.get(rule)
            if bound is not None and not is_number(bound):
                problems.append(f"{location}: rule {rule!r} must be a number, got {type_of(bound)}")
        pattern = field.get("pattern")
        if pattern is not None:
            try:
                re.compile(pattern)
            except (re.error, TypeError) as e:
                problems.append(f"{location}: invalid pattern {pattern!r}: {e}")
    return problems


def _required_refs(model: Schema) -> set[str]:
    """Models that any valid value of `model` must contain."""

    found: set[str] = set()
    stack: list[Schema] = [model]
    while stack:
        schema = stack.pop()
        for field in schema.values():
            if not isinstance(field, Mapping) or not field.get("required"):
                continue
            ref = field.get("$ref")
            if ref is not None:
                found.add(model_name(str(ref)))
            elif field.get("type") == "object" and isinstance(field.get("properties"), Mapping):
                stack.append(field["properties"])
    return found


def find_required_cycles(models: Models) -> list[list[str]]:
    """Find models that require themselves through a chain of required `$ref` fields.

    No finite value can satisfy such a model.
    """

    edges = {name: sorted(_required_refs(model) & set(models)) for name, model in models.items()}
    cycles: list[list[str]] = []
    done: set[str] = set()

    for root in models:
        if root in done:
            continue
        path: list[str] = [root]
        on_path: set[str] = {root}
        stack = [iter(edges[root])]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                finished = path.pop()
                on_path.discard(finished)
                done.add(finished)
                continue
            if nxt in on_path:
                cycles.append(path[path.index(nxt) :] + [nxt])
                continue
            if nxt in done:
                continue
            path.append(nxt)
            on_path.add(nxt)
            stack.append(iter(edges[nxt]))
    return cycles
