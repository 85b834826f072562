"""Generative task orchestration: dispatch, streaming, and structured extraction.

Architectural role:
    Provides the one reusable request lifecycle between UI-facing callers and an
    abstract completion service. Callers build a `TaskRequest`, hand it to the
    orchestrator together with their `TaskSession`, and observe `Delta`/`Done`
    events either by iterating `run(...)` or through a Result Sink passed to
    `submit(...)` / `execute(...)`.

Control-flow model (per task):
    1. `Pending`: the session supersedes any prior task synchronously.
    2. Structural request checks and the credential check; failures end the
       task with `Failed` before any transport call.
    3. `Dispatched`: one batch round trip, or a stream of chunks.
    4. Stream chunks are appended to the task buffer and forwarded as `Delta`.
    5. Batch text is validated against `response_schema` when one is declared.
    6. `Done(outcome)` is emitted exactly once unless the task was cancelled.

Cancellation strategy:
    Every upstream await is raced against the task's cancellation token, and
    every delivery is gated on `TaskHandle.is_current()` (generation snapshot).
    Late results from a transport that ignores cancellation are dropped.

Error handling strategy:
    Failures are returned as `Failed` outcomes, never raised past this module.
    Cancellation is a separate non-error path that emits nothing.

Side effects:
    Calls the completion service and the caller's sink. Holds no mutable state
    beyond what is scoped to one task invocation.
"""

import asyncio
import inspect
import logging
from contextlib import aclosing

from gentask.core.session import SessionClosedError, TaskHandle, TaskSession
from gentask.core.task_types import (
    MODE_STREAM,
    TASK_MODES,
    BinaryPart,
    Cancelled,
    Delta,
    Done,
    ErrorKind,
    Failed,
    StreamedText,
    TaskRequest,
    TextPart,
)
from gentask.llm.client import TransportCancelled, UpstreamError
from gentask.multimodal.encoder import RECOGNIZED_MEDIA_TYPES
from gentask.schema.validator import ValidationError, validate


logger = logging.getLogger(__name__)

_CANCELLED = object()


def check_request(request: TaskRequest, session: TaskSession | None = None) -> str | None:
    """Return a reason the request cannot be dispatched, or `None`.

    Rules:
        - `request.session_id` names the session it runs in.
        - At least one part.
        - Known mode.
        - Stream requests must not declare a response schema.
        - Text parts hold strings; binary parts carry a recognized media type
          and non-empty data.
    """
    if session is not None and request.session_id != session.session_id:
        return (
            f"Request belongs to session {request.session_id!r}, "
            f"not {session.session_id!r}"
        )

    if not request.parts:
        return "Request has no parts"

    if request.mode not in TASK_MODES:
        return f"Unknown mode: {request.mode!r}"

    if request.mode == MODE_STREAM and request.response_schema is not None:
        return "Streaming requests cannot declare a response schema"

    for index, part in enumerate(request.parts):
        if isinstance(part, TextPart):
            if not isinstance(part.value, str):
                return f"Part {index} text is not a string"
        elif isinstance(part, BinaryPart):
            if part.mime_type not in RECOGNIZED_MEDIA_TYPES:
                return f"Part {index} has unrecognized media type {part.mime_type!r}"
            if not part.data:
                return f"Part {index} has no data"
        else:
            return f"Part {index} is not a text or binary part"

    return None


async def _pull(iterator):
    """Fetch the next chunk as `(finished, chunk)`."""
    try:
        return False, await iterator.__anext__()
    except StopAsyncIteration:
        return True, None


async def _until_cancelled(awaitable, token):
    """Await `awaitable` unless `token` fires first.

    Returns the awaited result, or `_CANCELLED` when cancellation won the race.
    Exceptions from `awaitable` propagate.
    """
    if token.cancelled:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        return _CANCELLED

    step = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())

    try:
        done, _ = await asyncio.wait({step, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        step.cancel()
        waiter.cancel()
        raise

    waiter.cancel()
    if step in done:
        return step.result()

    step.cancel()
    await asyncio.gather(step, return_exceptions=True)
    return _CANCELLED


async def _close_quietly(iterator) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        logger.debug("Closing completion stream failed", exc_info=True)


async def _closed_session_events(message: str):
    yield Done(Failed(ErrorKind.SESSION_CLOSED, message))


class TaskOrchestrator:
    """Drives tasks against one completion service.

    Args:
        service: Object satisfying `gentask.llm.service.CompletionService`.
    """

    def __init__(self, service):
        self.service = service

    # ============================================================
    # Public API
    # ============================================================

    def run(self, session: TaskSession, request: TaskRequest):
        """Start a task and return its async event stream.

        The prior task of `session` is superseded before this method returns,
        so none of its events can be observed afterwards. The stream yields
        `Delta` events (stream mode) and then one `Done`, or ends without `Done`
        when the task is cancelled.
        """
        _, events = self._start(session, request)
        return events

    def submit(self, session: TaskSession, request: TaskRequest, sink=None) -> asyncio.Task:
        """Start a task and deliver its events to `sink` in the background.

        Must be called from a running event loop. The prior task is superseded
        synchronously. The returned task resolves to the `TaskOutcome`
        (`Cancelled` when the task was superseded or stopped).
        """
        handle, events = self._start(session, request)
        loop = asyncio.get_running_loop()
        return loop.create_task(self._deliver(handle, events, sink))

    async def execute(self, session: TaskSession, request: TaskRequest, sink=None):
        """Run a task to completion and return its `TaskOutcome`."""
        handle, events = self._start(session, request)
        return await self._deliver(handle, events, sink)

    # ============================================================
    # Lifecycle
    # ============================================================

    def _start(self, session: TaskSession, request: TaskRequest):
        try:
            handle = session.start_task(request)
        except SessionClosedError as err:
            logger.error("Task started on closed session %s", session.session_id)
            return None, _closed_session_events(str(err))
        return handle, self._drive(handle)

    async def _deliver(self, handle: TaskHandle | None, events, sink):
        """Forward events to `sink`; returns the terminal outcome."""
        outcome = None
        async with aclosing(events):
            async for event in events:
                if isinstance(event, Done):
                    outcome = event.outcome
                if sink is not None:
                    result = sink(event)
                    if inspect.isawaitable(result):
                        await result

        if outcome is None:
            reason = handle.token.reason if handle is not None else None
            return Cancelled(reason)
        return outcome

    async def _drive(self, handle: TaskHandle):
        """Event stream of one task; releases session ownership on exit."""
        request = handle.request
        session = handle.session

        try:
            problem = check_request(request, session)
            if problem is not None:
                logger.warning("Rejected request for session %s: %s", session.session_id, problem)
                if handle.is_current():
                    yield Done(Failed(ErrorKind.INVALID_REQUEST, problem))
                return

            if not self.service.has_credentials():
                logger.warning("No completion credential configured; session %s", session.session_id)
                if handle.is_current():
                    yield Done(Failed(ErrorKind.AUTH, "Completion service credential is not configured"))
                return

            if not handle.is_current():
                logger.debug("Task superseded before dispatch; session %s", session.session_id)
                return

            logger.info(
                "Dispatching %s task session=%s generation=%d parts=%d",
                request.mode,
                session.session_id,
                handle.generation,
                len(request.parts),
            )

            if request.mode == MODE_STREAM:
                async with aclosing(self._stream(handle)) as events:
                    async for event in events:
                        yield event
                return

            outcome = await self._batch(handle)
            if outcome is not None and handle.is_current():
                yield Done(outcome)
            else:
                logger.debug("Dropping batch result of superseded task; session %s", session.session_id)
        finally:
            session.finish(handle)

    # ============================================================
    # Stream path
    # ============================================================

    async def _stream(self, handle: TaskHandle):
        request = handle.request
        token = handle.token
        accumulated = ""

        iterator = None

        try:
            while True:
                try:
                    if iterator is None:
                        iterator = self.service.complete_stream(
                            request.parts,
                            request.system_instruction,
                            token=token,
                            model=request.model,
                            temperature=request.temperature,
                        ).__aiter__()
                    result = await _until_cancelled(_pull(iterator), token)
                except TransportCancelled:
                    result = _CANCELLED
                except UpstreamError as err:
                    if handle.is_current():
                        yield Done(self._upstream_failure(handle, err))
                    return
                except Exception:
                    logger.exception("Completion stream failed; session %s", handle.session.session_id)
                    if handle.is_current():
                        yield Done(Failed(ErrorKind.UPSTREAM_SERVER, "Completion stream failed"))
                    return

                if result is _CANCELLED or not handle.is_current():
                    logger.debug(
                        "Dropping stream delivery of superseded task; session %s generation %d",
                        handle.session.session_id,
                        handle.generation,
                    )
                    return

                finished, chunk = result
                if finished:
                    break
                if not chunk:
                    continue

                accumulated += chunk
                yield Delta(chunk, accumulated)

            if handle.is_current():
                logger.info(
                    "Stream task completed session=%s generation=%d chars=%d",
                    handle.session.session_id,
                    handle.generation,
                    len(accumulated),
                )
                yield Done(StreamedText(accumulated))
        finally:
            if iterator is not None:
                await _close_quietly(iterator)

    # ============================================================
    # Batch path
    # ============================================================

    async def _batch(self, handle: TaskHandle):
        """Return the batch outcome, or `None` when the task was cancelled."""
        request = handle.request

        try:
            result = await _until_cancelled(
                self.service.complete_batch(
                    request.parts,
                    request.system_instruction,
                    request.response_schema,
                    token=handle.token,
                    model=request.model,
                    temperature=request.temperature,
                ),
                handle.token,
            )
        except TransportCancelled:
            return None
        except UpstreamError as err:
            return self._upstream_failure(handle, err)
        except Exception:
            logger.exception("Completion request failed; session %s", handle.session.session_id)
            return Failed(ErrorKind.UPSTREAM_SERVER, "Completion request failed")

        if result is _CANCELLED or not handle.is_current():
            return None

        text = result if isinstance(result, str) else str(result or "")

        if request.response_schema is None:
            return StreamedText(text)

        checked = validate(text, request.response_schema)
        if isinstance(checked, ValidationError):
            logger.warning(
                "Schema validation failed session=%s code=%s path=%s",
                handle.session.session_id,
                checked.code,
                checked.path,
            )
            return Failed(ErrorKind.SCHEMA_VALIDATION, checked.message, detail=checked, raw_text=text)

        return checked

    @staticmethod
    def _upstream_failure(handle: TaskHandle, err: UpstreamError) -> Failed:
        logger.warning(
            "Upstream failure session=%s kind=%s: %s",
            handle.session.session_id,
            err.kind.value,
            err.message,
        )
        return Failed(err.kind, err.message)
