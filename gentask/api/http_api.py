"""
HTTP API adapter for the gentask orchestrator.

Architectural role:
- Expose task execution per session over HTTP.
- Enforce adapter-level input validation (part encoding, schema literals).
- Delegate the task lifecycle to `core.orchestrator.TaskOrchestrator`.
- Normalize task events and outcomes to JSON or SSE transport contracts.

Endpoint responsibilities:
- `POST /v1/sessions/{session_id}/tasks`: build a `TaskRequest`, run it in the
  session (superseding any in-flight task), return the outcome or stream events.
- `POST /v1/sessions/{session_id}/cancel`: cancel the session's active task.
- `DELETE /v1/sessions/{session_id}`: tear the session down.

API request lifecycle (`POST .../tasks`):
1. Parse the JSON body into `TaskPayload`.
2. Encode file parts (data URIs) and parse the optional response schema.
3. Resolve the session from the adapter's `SessionRegistry`.
4. Batch: await the outcome and map it to an HTTP status.
   Stream: return SSE frames (`delta`, `done`, then `[DONE]`).

Input validation behavior:
- Encoding failures -> HTTP 400 with the encoding error code.
- Malformed schema literal -> HTTP 400.
- Structural task problems -> `invalid-request` outcome (HTTP 400).

Error handling strategy:
- Task failures are outcome values mapped to statuses, never exceptions.
- Cancelled tasks answer 200 with `status: "cancelled"`.
- Client disconnects during streaming close the task's event stream.

Side effects:
- Holds per-process session state in `SESSIONS`.
- Emits debug logs only when `DEBUG == "true"`.
"""

from dotenv import load_dotenv

load_dotenv()

import json
import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from gentask.core.orchestrator import TaskOrchestrator
from gentask.core.session import SessionRegistry
from gentask.core.task_types import (
    MODE_BATCH,
    MODE_STREAM,
    Delta,
    ErrorKind,
    Failed,
    StreamedText,
    Structured,
    TaskRequest,
    TextPart,
)
from gentask.llm.service import build_completion_service
from gentask.multimodal.encoder import EncodingError, encode
from gentask.schema.shapes import SchemaDefinitionError, from_dict
from gentask.schema.validator import ValidationError


logger = logging.getLogger(__name__)

app = FastAPI()
# Sensitive request/response debug logging is opt-in.
DEBUG = os.getenv("DEBUG") == "true"

SESSIONS = SessionRegistry()

FAILURE_STATUS = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.SESSION_CLOSED: 409,
    ErrorKind.SCHEMA_VALIDATION: 422,
    ErrorKind.UPSTREAM_NETWORK: 502,
    ErrorKind.UPSTREAM_RATE_LIMIT: 502,
    ErrorKind.UPSTREAM_SERVER: 502,
}


# ============================================================
# Orchestrator wiring
# ============================================================

_ORCHESTRATOR: TaskOrchestrator | None = None


def set_orchestrator(orchestrator: TaskOrchestrator | None) -> None:
    """Override or clear the orchestrator used by the endpoints."""
    global _ORCHESTRATOR
    _ORCHESTRATOR = orchestrator


def get_orchestrator() -> TaskOrchestrator:
    """Lazily build the orchestrator from provider configuration."""
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = TaskOrchestrator(build_completion_service())
    return _ORCHESTRATOR


# ============================================================
# Request Schema
# ============================================================

class PartPayload(BaseModel):
    """One request part: `text`, or `file` as a data URI."""
    text: str | None = None
    file: str | None = None
    name: str | None = None


class TaskPayload(BaseModel):
    parts: list[PartPayload]
    system_instruction: str | None = None
    response_schema: dict | None = None
    stream: bool = False
    model: str | None = None
    temperature: float | None = None


# ============================================================
# Response formatting
# ============================================================

def outcome_payload(outcome) -> dict:
    """Serialize a `TaskOutcome` to a JSON-ready dict."""
    if isinstance(outcome, Structured):
        return {"status": "completed", "type": "structured", "value": outcome.value}

    if isinstance(outcome, StreamedText):
        return {"status": "completed", "type": "text", "text": outcome.text}

    if isinstance(outcome, Failed):
        error = {"kind": outcome.kind.value, "message": outcome.message}
        if isinstance(outcome.detail, ValidationError):
            error["code"] = outcome.detail.code
            error["path"] = outcome.detail.path
        if outcome.raw_text is not None:
            error["raw_text"] = outcome.raw_text
        return {"status": "failed", "error": error}

    return {"status": "cancelled", "reason": getattr(outcome, "reason", None)}


def event_payload(event) -> dict:
    if isinstance(event, Delta):
        return {"event": "delta", "text": event.text}
    return {"event": "done", **outcome_payload(event.outcome)}


def _build_request(session_id: str, body: TaskPayload):
    """Return `(TaskRequest, None)` or `(None, JSONResponse)` for bad input."""
    parts = []
    for index, part in enumerate(body.parts):
        if part.file is not None:
            encoded = encode(part.file.encode("utf-8"), part.name)
            if isinstance(encoded, EncodingError):
                return None, JSONResponse(
                    status_code=400,
                    content={"error": encoded.code, "message": encoded.message, "part": index},
                )
            parts.append(encoded)
        elif part.text is not None:
            parts.append(TextPart(part.text))
        else:
            return None, JSONResponse(
                status_code=400,
                content={"error": "empty-part", "message": "Part needs text or file", "part": index},
            )

    schema = None
    if body.response_schema is not None:
        try:
            schema = from_dict(body.response_schema)
        except SchemaDefinitionError as err:
            return None, JSONResponse(
                status_code=400,
                content={"error": "invalid-schema", "message": str(err)},
            )

    request = TaskRequest(
        parts=tuple(parts),
        session_id=session_id,
        mode=MODE_STREAM if body.stream else MODE_BATCH,
        system_instruction=body.system_instruction,
        response_schema=schema,
        model=body.model,
        temperature=body.temperature,
    )
    return request, None


# ============================================================
# Task endpoints
# ============================================================

@app.post("/v1/sessions/{session_id}/tasks")
async def create_task(session_id: str, body: TaskPayload, request: Request):
    """
    Run one task in the named session.

    Response formatting:
    - Batch: outcome JSON, HTTP status from `FAILURE_STATUS` for failures.
    - Stream: SSE `data:` frames with `delta` events, one `done` event, then
      the `[DONE]` sentinel. Cancelled streams end without a `done` event.
    """
    task_request, error_response = _build_request(session_id, body)
    if error_response is not None:
        return error_response

    if DEBUG:
        logger.debug("Task for session %s: %r", session_id, task_request)

    orchestrator = get_orchestrator()
    session = SESSIONS.get(session_id)

    if not body.stream:
        outcome = await orchestrator.execute(session, task_request)
        status_code = FAILURE_STATUS.get(outcome.kind, 500) if isinstance(outcome, Failed) else 200
        return JSONResponse(status_code=status_code, content=outcome_payload(outcome))

    events = orchestrator.run(session, task_request)

    async def event_generator():
        """
        Yield SSE frames for task events.

        Side effects:
        - Stops and closes the task stream when the client disconnects.

        Nothing is awaited between pulling an event and yielding its frame.
        """
        try:
            while True:
                if await request.is_disconnected():
                    if DEBUG:
                        logger.debug("Client disconnected during stream; session %s", session_id)
                    return
                try:
                    event = await events.__anext__()
                except StopAsyncIteration:
                    break
                yield f"data: {json.dumps(event_payload(event))}\n\n"

            yield "data: [DONE]\n\n"
        finally:
            await events.aclose()

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@app.post("/v1/sessions/{session_id}/cancel")
def cancel_task(session_id: str):
    """Cancel the session's active task (no-op when idle)."""
    return {"session_id": session_id, "cancelled": SESSIONS.cancel(session_id)}


@app.delete("/v1/sessions/{session_id}")
def delete_session(session_id: str):
    """Tear down the session, cancelling any active task."""
    return {"session_id": session_id, "closed": SESSIONS.teardown(session_id)}
