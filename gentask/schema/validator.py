"""Schema validation for structured (JSON) model output.

Processing flow:
    1. Strip one optional markdown code fence around the candidate text.
    2. Parse the text as JSON; failures become `malformed-syntax`.
    3. Walk the declared shape recursively and report the first violation.

Tolerance rules:
    - Unknown extra object fields are ignored.
    - Optional fields set to `null` are treated as absent.
    - A required field set to `null` is a `type-mismatch`.

Totality:
    `validate` returns exactly one of `Structured` or `ValidationError` for any
    input and never raises.

Path format:
    Dotted field names with `[i]` indices (`items[2].severity`); the root
    value is reported as `$`.
"""

import json
import re
from dataclasses import dataclass, field, replace
from typing import Any

from gentask.core.task_types import Structured
from gentask.schema.shapes import (
    BOOLEAN,
    NUMBER,
    STRING,
    ArrayShape,
    EnumShape,
    ObjectShape,
    Shape,
)


MALFORMED_SYNTAX = "malformed-syntax"
MISSING_FIELD = "missing-field"
TYPE_MISMATCH = "type-mismatch"
INVALID_ENUM = "invalid-enum"

ROOT_PATH = "$"

_FENCE_RE = re.compile(r"^\s*```[\w-]*[ \t]*\n?(.*?)\n?```\s*$", re.DOTALL)


@dataclass(frozen=True)
class ValidationError:
    """Structured description of the first schema violation.

    Attributes:
        code: One of `malformed-syntax`, `missing-field`, `type-mismatch`,
            `invalid-enum`.
        path: Location of the violation (`$` for the root).
        value: Offending value (the enum candidate, or the raw text for
            syntax errors).
        raw_text: Unmodified candidate text, kept for diagnostics.
    """

    code: str
    path: str = ROOT_PATH
    value: Any = None
    raw_text: str | None = field(default=None, compare=False)

    @property
    def message(self) -> str:
        if self.code == MALFORMED_SYNTAX:
            return "Response is not valid JSON"
        if self.code == MISSING_FIELD:
            return f"Required field '{self.path}' is missing"
        if self.code == INVALID_ENUM:
            return f"Value {self.value!r} at '{self.path}' is not an allowed option"
        return f"Value at '{self.path}' has the wrong type"


def validate(candidate_text: str, schema: Shape):
    """Parse and check model output against a declared shape.

    Args:
        candidate_text: Raw response text from the completion service.
        schema: Declared response shape.

    Returns:
        `Structured(value)` on success, otherwise `ValidationError`.
    """
    if not isinstance(candidate_text, str):
        return ValidationError(MALFORMED_SYNTAX, ROOT_PATH, candidate_text, raw_text=None)

    try:
        value = json.loads(_strip_fence(candidate_text))
    except (ValueError, RecursionError):
        return ValidationError(MALFORMED_SYNTAX, ROOT_PATH, candidate_text, raw_text=candidate_text)

    error = check_value(value, schema)
    if error is not None:
        return replace(error, raw_text=candidate_text)

    return Structured(value, raw_text=candidate_text)


def check_value(value: Any, shape: Shape, path: str = ""):
    """Return the first `ValidationError` for `value` under `shape`, or `None`."""
    if isinstance(shape, ObjectShape):
        if not isinstance(value, dict):
            return ValidationError(TYPE_MISMATCH, path or ROOT_PATH, value)

        for name in shape.required:
            if name not in value:
                return ValidationError(MISSING_FIELD, _join(path, name))

        for name, sub_shape in shape.properties.items():
            if name not in value:
                continue
            item = value[name]
            if item is None and name not in shape.required:
                continue
            error = check_value(item, sub_shape, _join(path, name))
            if error is not None:
                return error
        return None

    if isinstance(shape, ArrayShape):
        if not isinstance(value, list):
            return ValidationError(TYPE_MISMATCH, path or ROOT_PATH, value)
        for index, item in enumerate(value):
            error = check_value(item, shape.items, f"{path or ROOT_PATH}[{index}]")
            if error is not None:
                return error
        return None

    if isinstance(shape, EnumShape):
        if not isinstance(value, str):
            return ValidationError(TYPE_MISMATCH, path or ROOT_PATH, value)
        if value not in shape.values:
            return ValidationError(INVALID_ENUM, path or ROOT_PATH, value)
        return None

    if not _matches_primitive(value, shape.type):
        return ValidationError(TYPE_MISMATCH, path or ROOT_PATH, value)
    return None


def _matches_primitive(value: Any, type_name: str) -> bool:
    # bool is an int subclass; keep the two apart.
    if type_name == STRING:
        return isinstance(value, str)
    if type_name == NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if type_name == BOOLEAN:
        return isinstance(value, bool)
    return False


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _strip_fence(text: str) -> str:
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1)
    return text
