"""Value validation against declarative data schemas.

A schema is a mapping of field name to field definition::

    {
        "age": {"type": "number", "min": 18, "required": True},
        "cart": {"type": "array", "items": {"$ref": "#/models/CartItem"}},
    }

Field definitions may carry `type` (string, number, boolean, array, object),
`required`, `default`, `$ref`, and type-specific rules: `minLength`,
`maxLength`, `pattern` for strings (length rules also apply to arrays),
`min`/`max` for numbers, `items` for arrays and `properties` for objects.

Validation never stops at the first problem. Every violation is collected and
tagged with a dotted path such as `cart[2].price`.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from phaseflow.errors import ConfigurationError, ValidationError

MODEL_REF_PREFIX = "#/models/"

SCHEMA_TYPES: frozenset[str] = frozenset({"string", "number", "boolean", "array", "object"})

BOUND_RULES = ("min", "max", "minLength", "maxLength")

Schema = Mapping[str, Mapping[str, Any]]
Models = Mapping[str, Schema]


@dataclass(frozen=True, slots=True)
class Violation:
    path: str
    message: str
    kind: Literal["value", "configuration"] = "value"

    @property
    def is_configuration(self) -> bool:
        return self.kind == "configuration"

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


def model_name(ref: str) -> str:
    """`#/models/Product` -> `Product`. Bare model names are accepted as-is."""

    return ref[len(MODEL_REF_PREFIX) :] if ref.startswith(MODEL_REF_PREFIX) else ref


def resolve_model_ref(ref: str, models: Models) -> Schema | None:
    return models.get(model_name(ref))


def resolve_field(field: Mapping[str, Any], models: Models) -> Mapping[str, Any]:
    """Substitute a `$ref` field by an object field whose properties are the model.

    Keys declared next to `$ref` (`required`, `default`...) are preserved.
    Raises KeyError when the model does not exist.
    """

    ref = field.get("$ref")
    if ref is None:
        return field
    model = models[model_name(ref)]
    resolved: dict[str, Any] = {"type": "object", "properties": model}
    resolved.update((k, v) for k, v in field.items() if k != "$ref")
    return resolved


def type_of(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list | tuple):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def validate(value: Any, schema: Schema, models: Models | None = None) -> list[Violation]:
    """Validate `value` (a mapping) against `schema`, resolving `$ref` against `models`."""

    walker = _Walker(models or {})
    if not isinstance(value, Mapping):
        walker.add("", f"expected object, got {type_of(value)}")
        return walker.violations
    walker.check_object(value, schema, "", frozenset())
    return walker.violations


def ensure_valid(
    value: Any, schema: Schema, models: Models | None = None, *, context: str = "value"
) -> None:
    """Raise when `value` does not conform to `schema`.

    Configuration-level violations (unknown model, bad pattern, reference
    cycle) raise ConfigurationError; anything else raises ValidationError.
    """

    violations = validate(value, schema, models)
    configuration = [v for v in violations if v.is_configuration]
    if configuration:
        raise ConfigurationError([str(v) for v in configuration])
    if violations:
        raise ValidationError(violations, context=context)


class _Walker:
    def __init__(self, models: Models) -> None:
        self.models = models
        self.violations: list[Violation] = []

    def add(self, path: str, message: str, configuration: bool = False) -> None:
        kind: Literal["value", "configuration"] = "configuration" if configuration else "value"
        self.violations.append(Violation(path=path, message=message, kind=kind))

    def check_object(
        self,
        value: Mapping[str, Any],
        schema: Schema,
        path: str,
        active: frozenset[tuple[int, str]],
    ) -> None:
        for key, field in schema.items():
            field_path = f"{path}.{key}" if path else key
            if value.get(key) is None:
                if field.get("required"):
                    self.add(field_path, "required field missing")
                continue
            self.check_field(value[key], field, field_path, active)

    def check_field(
        self,
        value: Any,
        field: Mapping[str, Any],
        path: str,
        active: frozenset[tuple[int, str]],
    ) -> None:
        ref = field.get("$ref")
        if ref is not None:
            name = model_name(ref)
            if name not in self.models:
                self.add(path, f"model reference not found: {ref}", configuration=True)
                return
            # The same container checked against the same model twice on one
            # path means the value refers back to itself.
            marker = (id(value), name)
            if marker in active:
                self.add(path, f"circular reference while resolving {ref}", configuration=True)
                return
            active = active | {marker}
            field = resolve_field(field, self.models)

        expected = field.get("type")
        if expected is not None:
            actual = type_of(value)
            if actual != expected:
                self.add(path, f"expected {expected}, got {actual}")
                return

        if expected == "string":
            self._check_length(value, field, path)
            pattern = field.get("pattern")
            if pattern:
                try:
                    matched = re.search(pattern, value) is not None
                except (re.error, TypeError) as e:
                    self.add(path, f"invalid pattern {pattern!r}: {e}", configuration=True)
                    return
                if not matched:
                    self.add(path, f"must match pattern {pattern}")
        elif expected == "number":
            minimum = self._bound(field, "min", path)
            maximum = self._bound(field, "max", path)
            if minimum is not None and value < minimum:
                self.add(path, f"must be >= {minimum}")
            if maximum is not None and value > maximum:
                self.add(path, f"must be <= {maximum}")
        elif expected == "array":
            self._check_length(value, field, path)
            items = field.get("items")
            if items:
                for index, item in enumerate(value):
                    self.check_field(item, items, f"{path}[{index}]", active)
        elif expected == "object":
            properties = field.get("properties")
            if properties:
                self.check_object(value, properties, path, active)

    def _check_length(self, value: Any, field: Mapping[str, Any], path: str) -> None:
        min_length = self._bound(field, "minLength", path)
        max_length = self._bound(field, "maxLength", path)
        if min_length is not None and len(value) < min_length:
            self.add(path, f"length must be >= {min_length}")
        if max_length is not None and len(value) > max_length:
            self.add(path, f"length must be <= {max_length}")

    def _bound(self, field: Mapping[str, Any], rule: str, path: str) -> Any:
        bound = field.get(rule)
        if bound is None or is_number(bound):
            return bound
        self.add(path, f"rule {rule!r} must be a number, got {type_of(bound)}", configuration=True)
        return None
