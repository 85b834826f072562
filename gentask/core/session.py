"""Task sessions: single-flight ownership and cancellation per UI surface.

Architectural role:
    A `TaskSession` is the cancellation boundary for one logical surface (one
    chat widget, one auditor dialog). At most one task is active per session;
    starting a new task cancels the previous one before the new task can
    deliver anything.

Control-flow model:
    - `start_task` cancels the active controller, bumps `generation`, installs a
      fresh `CancellationController`, and returns a `TaskHandle` carrying the
      generation snapshot.
    - Every delivery checks `TaskHandle.is_current()`; superseded or cancelled
      tasks fail the check and their late results are dropped.
    - `teardown` cancels and closes the session; later `start_task` calls raise
      `SessionClosedError`.

Concurrency:
    Single-threaded event-loop model. State is mutated only at task start,
    explicit cancel, and task end, with no concurrent writers. Sessions share
    nothing with each other.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from gentask.core.task_types import ErrorKind


logger = logging.getLogger(__name__)


class SessionClosedError(RuntimeError):
    """`start_task` was called on a session after `teardown`."""

    kind = ErrorKind.SESSION_CLOSED


# ============================================================
# Cancellation primitives
# ============================================================

class CancellationToken:
    """Read side of a cancellation controller, handed to transports."""

    def __init__(self):
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callable[[str | None], Any]] = []
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def add_callback(self, callback: Callable[[str | None], Any]) -> None:
        """Run `callback(reason)` on cancellation (immediately if already cancelled)."""
        if self._cancelled:
            callback(self._reason)
        else:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[str | None], Any]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def wait(self) -> str | None:
        """Suspend until cancellation; returns the reason."""
        if not self._cancelled:
            if self._event is None:
                self._event = asyncio.Event()
            await self._event.wait()
        return self._reason

    def _fire(self, reason: str | None) -> None:
        self._cancelled = True
        self._reason = reason
        if self._event is not None:
            self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("Cancellation callback failed")


class CancellationController:
    """Owns cancellation of exactly one task."""

    def __init__(self):
        self.token = CancellationToken()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def cancel(self, reason: str | None = None) -> bool:
        """Cancel once; returns False when already cancelled."""
        if self.token.cancelled:
            return False
        self.token._fire(reason)
        return True


# ============================================================
# Session and handle
# ============================================================

@dataclass(eq=False)
class TaskHandle:
    """Ownership ticket for one started task.

    Attributes:
        session: Owning session.
        generation: Snapshot of `session.generation` taken at start.
        controller: Cancellation controller of this task.
        request: The request the task was started for.
    """

    session: "TaskSession"
    generation: int
    controller: CancellationController
    request: Any = field(default=None, repr=False)

    @property
    def token(self) -> CancellationToken:
        return self.controller.token

    def is_current(self) -> bool:
        """True while this task still owns the session and is not cancelled."""
        return (
            not self.controller.cancelled
            and self.session.generation == self.generation
        )

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel this task if it is still the session's active task."""
        if not self.is_current():
            return False
        return self.session.cancel(reason)


class TaskSession:
    """Mutable per-surface state: generation counter and active controller."""

    def __init__(self, session_id: str | None = None):
        self.session_id = session_id or uuid.uuid4().hex
        self.generation = 0
        self.active_controller: CancellationController | None = None
        self.closed = False

    def __repr__(self):
        return (
            f"TaskSession(session_id={self.session_id!r}, generation={self.generation}, "
            f"active={self.active_controller is not None}, closed={self.closed})"
        )

    @property
    def busy(self) -> bool:
        return self.active_controller is not None

    def start_task(self, request=None) -> TaskHandle:
        """Supersede any active task and take ownership for a new one.

        Raises:
            SessionClosedError: When the session was torn down.
        """
        if self.closed:
            raise SessionClosedError(f"Session {self.session_id} is closed")

        self.cancel("superseded")
        self.generation += 1
        controller = CancellationController()
        self.active_controller = controller

        logger.debug("Session %s started generation %d", self.session_id, self.generation)
        return TaskHandle(self, self.generation, controller, request)

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel the active task, if any. Idempotent."""
        controller = self.active_controller
        if controller is None:
            return False

        self.active_controller = None
        cancelled = controller.cancel(reason)
        if cancelled:
            logger.debug(
                "Session %s cancelled generation %d (%s)",
                self.session_id,
                self.generation,
                reason,
            )
        return cancelled

    def finish(self, handle: TaskHandle) -> None:
        """Release ownership at task end; no-op for superseded handles."""
        if self.active_controller is handle.controller:
            self.active_controller = None

    def teardown(self) -> None:
        """Cancel the active task and stop accepting new ones."""
        self.cancel("teardown")
        self.closed = True
        logger.debug("Session %s torn down", self.session_id)


class SessionRegistry:
    """Maps session ids to sessions for adapters serving many surfaces."""

    def __init__(self):
        self._sessions: dict[str, TaskSession] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> TaskSession:
        """Return the open session for `session_id`, creating it on first use."""
        session = self._sessions.get(session_id)
        if session is None or session.closed:
            session = TaskSession(session_id)
            self._sessions[session_id] = session
        return session

    def cancel(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        return session.cancel()

    def teardown(self, session_id: str) -> bool:
        """Tear down and forget a session; False when unknown."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.teardown()
        return True

    def teardown_all(self) -> None:
        for session_id in list(self._sessions):
            self.teardown(session_id)
