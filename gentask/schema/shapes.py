"""Declarative response shapes for structured extraction.

Architectural role:
    Replaces loosely-typed nested schema literals with a small tagged hierarchy
    (`PrimitiveShape`, `EnumShape`, `ArrayShape`, `ObjectShape`). Shapes are
    data only: `schema.validator` walks them, and the transport layer renders
    them into a provider's response-schema dialect.

Construction paths:
    - Builder helpers: `string()`, `number()`, `boolean()`, `enum(...)`,
      `array(...)`, `obj(...)`.
    - `from_dict(...)` for provider-style literals such as
      `{"type": "OBJECT", "properties": {...}, "required": [...]}`.

Failure behavior:
    Malformed definitions raise `SchemaDefinitionError` at construction time.
    That is a programming error in the caller, not a validation outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Union


STRING = "string"
NUMBER = "number"
BOOLEAN = "boolean"
PRIMITIVE_TYPES = (STRING, NUMBER, BOOLEAN)


class SchemaDefinitionError(ValueError):
    """Raised when a schema literal cannot be turned into a shape."""


@dataclass(frozen=True)
class PrimitiveShape:
    type: str
    description: str | None = None

    def __post_init__(self):
        if self.type not in PRIMITIVE_TYPES:
            raise SchemaDefinitionError(f"Unknown primitive type: {self.type!r}")


@dataclass(frozen=True)
class EnumShape:
    values: tuple[str, ...]
    description: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(self.values))
        if not self.values:
            raise SchemaDefinitionError("Enum shape needs at least one value")


@dataclass(frozen=True)
class ArrayShape:
    items: Shape
    description: str | None = None


@dataclass(frozen=True)
class ObjectShape:
    """Object with named fields.

    A name listed in `required` without an entry in `properties` only has to be
    present; its value is not checked.
    """

    properties: Mapping[str, Shape] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    description: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "properties", dict(self.properties))
        object.__setattr__(self, "required", tuple(self.required))


Shape = Union[PrimitiveShape, EnumShape, ArrayShape, ObjectShape]


# ============================================================
# BUILDERS
# ============================================================

def string(description: str | None = None) -> PrimitiveShape:
    return PrimitiveShape(STRING, description)


def number(description: str | None = None) -> PrimitiveShape:
    return PrimitiveShape(NUMBER, description)


def boolean(description: str | None = None) -> PrimitiveShape:
    return PrimitiveShape(BOOLEAN, description)


def enum(*values: str, description: str | None = None) -> EnumShape:
    return EnumShape(tuple(values), description)


def array(items: Shape, description: str | None = None) -> ArrayShape:
    return ArrayShape(items, description)


def obj(
    properties: Mapping[str, Shape] | None = None,
    required=None,
    description: str | None = None,
) -> ObjectShape:
    return ObjectShape(properties or {}, tuple(required or ()), description)


# ============================================================
# LITERAL PARSING
# ============================================================

def from_dict(definition: Mapping[str, Any]) -> Shape:
    """Build a shape from a provider-style schema literal.

    Args:
        definition: Mapping with a `type` key (`OBJECT`, `ARRAY`, `STRING`,
            `NUMBER`, `BOOLEAN`; case-insensitive). `STRING` with an `enum`
            list becomes an `EnumShape`. An object literal may omit `type`
            when it has `properties` or `required`.

    Returns:
        The equivalent shape tree.

    Raises:
        SchemaDefinitionError: On unknown types, missing `items`, or
            non-mapping nodes.
    """
    if not isinstance(definition, Mapping):
        raise SchemaDefinitionError(f"Schema node must be a mapping, got {type(definition).__name__}")

    description = definition.get("description")
    raw_type = definition.get("type")
    if raw_type is None and ("properties" in definition or "required" in definition):
        raw_type = "object"
    if not isinstance(raw_type, str):
        raise SchemaDefinitionError(f"Schema node has no usable type: {definition!r}")

    kind = raw_type.lower()

    if kind == "object":
        properties = definition.get("properties")
        if properties is None:
            properties = {}
        if not isinstance(properties, Mapping):
            raise SchemaDefinitionError("'properties' must be a mapping")
        required = definition.get("required") or []
        if not isinstance(required, (list, tuple)) or not all(isinstance(n, str) for n in required):
            raise SchemaDefinitionError("'required' must be a list of field names")
        return ObjectShape(
            {name: from_dict(sub) for name, sub in properties.items()},
            tuple(required),
            description,
        )

    if kind == "array":
        if "items" not in definition:
            raise SchemaDefinitionError("Array schema needs 'items'")
        return ArrayShape(from_dict(definition["items"]), description)

    if "enum" in definition:
        values = definition["enum"]
        if not isinstance(values, (list, tuple)) or not all(isinstance(v, str) for v in values):
            raise SchemaDefinitionError("'enum' must be a list of strings")
        return EnumShape(tuple(values), description)

    if kind in ("integer", "float"):
        kind = NUMBER

    return PrimitiveShape(kind, description)


# ============================================================
# PROVIDER DIALECTS
# ============================================================

def as_gemini_schema(shape: Shape) -> dict:
    """Render a shape as a Gemini `responseSchema` (upper-case type names)."""
    if isinstance(shape, ObjectShape):
        out: dict = {
            "type": "OBJECT",
            "properties": {name: as_gemini_schema(sub) for name, sub in shape.properties.items()},
        }
        if shape.required:
            out["required"] = list(shape.required)
    elif isinstance(shape, ArrayShape):
        out = {"type": "ARRAY", "items": as_gemini_schema(shape.items)}
    elif isinstance(shape, EnumShape):
        out = {"type": "STRING", "enum": list(shape.values)}
    else:
        out = {"type": shape.type.upper()}

    if shape.description:
        out["description"] = shape.description
    return out


def as_json_schema(shape: Shape) -> dict:
    """Render a shape as JSON Schema for OpenAI-style `response_format`."""
    if isinstance(shape, ObjectShape):
        out: dict = {
            "type": "object",
            "properties": {name: as_json_schema(sub) for name, sub in shape.properties.items()},
        }
        if shape.required:
            out["required"] = list(shape.required)
    elif isinstance(shape, ArrayShape):
        out = {"type": "array", "items": as_json_schema(shape.items)}
    elif isinstance(shape, EnumShape):
        out = {"type": "string", "enum": list(shape.values)}
    else:
        out = {"type": shape.type}

    if shape.description:
        out["description"] = shape.description
    return out
