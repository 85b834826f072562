"""Task data contracts shared by the orchestrator, transports, and adapters.

Architectural role:
    Defines the immutable request value (`TaskRequest` with its ordered parts),
    the error taxonomy (`ErrorKind`), the terminal outcomes, and the events a
    Result Sink observes while a task runs.

Control-flow interaction:
    Adapters build `TaskRequest` values, `core.orchestrator` turns them into
    `Delta`/`Done` events, and sinks inspect the `TaskOutcome` carried by `Done`.

Determinism:
    All types here are frozen data classes with no behavior beyond light
    normalization. Equality is structural.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from gentask.schema.shapes import Shape


MODE_STREAM = "stream"
MODE_BATCH = "batch"
TASK_MODES = (MODE_STREAM, MODE_BATCH)


# ============================================================
# Parts
# ============================================================

@dataclass(frozen=True)
class TextPart:
    """Plain text segment of a request."""

    value: str
    kind: str = field(default="text", init=False)


@dataclass(frozen=True)
class BinaryPart:
    """Encoded binary segment produced by `multimodal.encoder.encode`.

    Attributes:
        mime_type: Recognized media type of the payload.
        data: Base64 text of the payload bytes.
        name: Optional caller-declared file name (diagnostics only).
    """

    mime_type: str
    data: str
    name: str | None = None
    kind: str = field(default="binary", init=False)

    @property
    def size(self) -> int:
        """Decoded payload size in bytes."""
        return len(base64.b64decode(self.data))


Part = Union[TextPart, BinaryPart]


# ============================================================
# Request
# ============================================================

@dataclass(frozen=True)
class TaskRequest:
    """One generative invocation, created by the caller and never mutated.

    Attributes:
        parts: Ordered text/binary segments (normalized to a tuple).
        session_id: Caller-assigned identifier of the owning UI surface.
        mode: `"stream"` for incremental text, `"batch"` for one round trip.
        system_instruction: Optional instruction forwarded to the provider.
        response_schema: Optional shape the batch response must satisfy.
        model: Optional per-request model override.
        temperature: Optional per-request sampling temperature.
    """

    parts: tuple[Part, ...]
    session_id: str
    mode: str = MODE_BATCH
    system_instruction: str | None = None
    response_schema: Shape | None = None
    model: str | None = None
    temperature: float | None = None

    def __post_init__(self):
        object.__setattr__(self, "parts", tuple(self.parts))


# ============================================================
# Errors and outcomes
# ============================================================

class ErrorKind(str, Enum):
    """Failure categories surfaced on `Failed` outcomes."""

    AUTH = "auth"
    UPSTREAM_NETWORK = "upstream-network"
    UPSTREAM_RATE_LIMIT = "upstream-rate-limit"
    UPSTREAM_SERVER = "upstream-server"
    SCHEMA_VALIDATION = "schema-validation"
    INVALID_REQUEST = "invalid-request"
    SESSION_CLOSED = "session-closed"


@dataclass(frozen=True)
class Cancelled:
    """Task was superseded or explicitly stopped. Not an error."""

    reason: str | None = None


@dataclass(frozen=True)
class Failed:
    """Task ended without a usable result.

    `detail` holds the `schema.validator.ValidationError` for schema failures;
    `raw_text` keeps the unvalidated model output for retry flows.
    """

    kind: ErrorKind
    message: str
    detail: Any = None
    raw_text: str | None = None


@dataclass(frozen=True)
class StreamedText:
    """Final accumulated text of a stream task (or plain batch text)."""

    text: str


@dataclass(frozen=True)
class Structured:
    """Schema-validated value decoded from the model output."""

    value: Any
    raw_text: str | None = field(default=None, compare=False)


TaskOutcome = Union[Cancelled, Failed, StreamedText, Structured]


# ============================================================
# Events
# ============================================================

@dataclass(frozen=True)
class Delta:
    """Incremental chunk plus the buffer accumulated so far (chunk included)."""

    text: str
    accumulated: str = ""


@dataclass(frozen=True)
class Done:
    """Terminal event of a task."""

    outcome: TaskOutcome


TaskEvent = Union[Delta, Done]
