"""
Terminal adapter for gentask.

Architectural role:
- Exposes one-shot and interactive access to the task orchestrator.
- Owns exactly one `TaskSession` per process, like one chat surface.
- Delegates all generation work to `core.orchestrator.TaskOrchestrator`.

Interface responsibilities:
- Encode `--file` / `/attach` inputs into binary parts.
- Load a response schema literal from a JSON file (`--schema`).
- Render streamed deltas incrementally and structured results as JSON.

Request lifecycle (per user turn, interactive):
1. Read stdin.
2. Handle local control commands (`exit`/`quit`, `clear chat`, `/attach`,
   `/system`).
3. Send regular text, plus pending attachments, as a stream task.
4. Print deltas as they arrive; Ctrl-C cancels the running task.

Error handling strategy:
- Encoding and schema-file problems are reported and the turn is skipped.
- `Failed` outcomes are printed as errors; `Cancelled` is printed as a notice.
- EOF and keyboard interrupts at the prompt terminate without traceback.
"""

from dotenv import load_dotenv

load_dotenv()

import argparse
import asyncio
import json
import sys

from gentask.core.orchestrator import TaskOrchestrator
from gentask.core.session import TaskSession
from gentask.core.task_types import (
    MODE_BATCH,
    MODE_STREAM,
    Cancelled,
    Delta,
    Failed,
    StreamedText,
    Structured,
    TaskRequest,
    TextPart,
)
from gentask.llm.service import build_completion_service
from gentask.multimodal.encoder import EncodingError, encode
from gentask.schema.shapes import from_dict


_ORCHESTRATOR: TaskOrchestrator | None = None


def set_orchestrator(orchestrator: TaskOrchestrator | None) -> None:
    """Override or clear the orchestrator used by the CLI."""
    global _ORCHESTRATOR
    _ORCHESTRATOR = orchestrator


def get_orchestrator(provider=None) -> TaskOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = TaskOrchestrator(build_completion_service(provider))
    return _ORCHESTRATOR


# =========================================================
# INPUT HELPERS
# =========================================================

def load_attachment(path):
    """Read and encode one file; returns `BinaryPart` or `EncodingError`."""
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as err:
        return EncodingError("unreadable-file", str(err))
    return encode(raw, path)


def load_schema(path):
    """Read a schema literal from a JSON file and build its shape."""
    with open(path, "r", encoding="utf-8") as f:
        return from_dict(json.load(f))


def print_delta(event):
    """Result sink that writes streamed text to stdout."""
    if isinstance(event, Delta):
        print(event.text, end="", flush=True)


def render_outcome(outcome, streamed=False) -> int:
    """Print a terminal outcome; returns the process exit code."""
    if isinstance(outcome, Structured):
        print(json.dumps(outcome.value, indent=2, ensure_ascii=False))
        return 0

    if isinstance(outcome, StreamedText):
        if streamed:
            print()
        else:
            print(outcome.text)
        return 0

    if isinstance(outcome, Failed):
        if streamed:
            print()
        print(f"Error ({outcome.kind.value}): {outcome.message}", file=sys.stderr)
        return 1

    if isinstance(outcome, Cancelled):
        print("\nRequest cancelled.")
    return 130


async def run_task(orchestrator, session, request):
    """Run one task, cancelling it through the session on Ctrl-C."""
    task = orchestrator.submit(session, request, sink=print_delta)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        session.cancel("interrupted")
        return await task


# =========================================================
# ONE-SHOT MODE
# =========================================================

def run_once(args) -> int:
    parts = []
    for path in args.file or []:
        encoded = load_attachment(path)
        if isinstance(encoded, EncodingError):
            print(f"Cannot attach {path}: {encoded.code} {encoded.message}", file=sys.stderr)
            return 2
        parts.append(encoded)
    parts.append(TextPart(args.prompt))

    schema = None
    if args.schema:
        try:
            schema = load_schema(args.schema)
        except (OSError, ValueError) as err:
            print(f"Cannot load schema {args.schema}: {err}", file=sys.stderr)
            return 2

    batch = args.batch or schema is not None
    request = TaskRequest(
        parts=tuple(parts),
        session_id="cli",
        mode=MODE_BATCH if batch else MODE_STREAM,
        system_instruction=args.system,
        response_schema=schema,
        model=args.model,
    )

    orchestrator = get_orchestrator(args.provider)
    session = TaskSession("cli")
    try:
        outcome = asyncio.run(run_task(orchestrator, session, request))
    except KeyboardInterrupt:
        outcome = Cancelled("interrupted")
    finally:
        session.teardown()

    return render_outcome(outcome, streamed=not batch)


# =========================================================
# INTERACTIVE MODE
# =========================================================

def interactive(args) -> int:
    """
    Run the chat loop.

    Local commands:
    - `exit` / `quit`: leave.
    - `clear chat`: tear the session down and start a fresh one.
    - `/attach PATH`: encode a file for the next question.
    - `/system TEXT`: set the system instruction (empty clears it).
    """
    orchestrator = get_orchestrator(args.provider)
    session = TaskSession("cli")
    system_instruction = args.system
    attachments = []

    print("gentask started. (Type 'exit' to quit)")
    print("-" * 60)

    while True:

        try:
            question = input("Question: ").strip()

        except EOFError:
            print()
            break

        except KeyboardInterrupt:
            print("\nOperation cancelled by user.")
            break

        if not question:
            continue

        if question.lower() in ("exit", "quit"):
            break

        if question.lower() in ("empty chat", "clear chat"):
            session.teardown()
            session = TaskSession("cli")
            attachments = []
            print("Chat cleared.")
            continue

        if question.startswith("/attach"):
            path = question[len("/attach"):].strip()
            encoded = load_attachment(path)
            if isinstance(encoded, EncodingError):
                print(f"Cannot attach {path}: {encoded.code} {encoded.message}")
            else:
                attachments.append(encoded)
                print(f"Attached {path} ({encoded.mime_type}).")
            continue

        if question.startswith("/system"):
            system_instruction = question[len("/system"):].strip() or None
            print("System instruction updated.")
            continue

        request = TaskRequest(
            parts=(*attachments, TextPart(question)),
            session_id=session.session_id,
            mode=MODE_STREAM,
            system_instruction=system_instruction,
            model=args.model,
        )
        attachments = []

        print("\nResponse:\n")
        try:
            outcome = asyncio.run(run_task(orchestrator, session, request))
        except KeyboardInterrupt:
            outcome = Cancelled("interrupted")
        render_outcome(outcome, streamed=True)

        print("\n" + "-" * 60 + "\n")

    session.teardown()
    print("Shutting down.")
    return 0


# =========================================================
# MAIN
# =========================================================

def build_parser():
    parser = argparse.ArgumentParser(prog="gentask", description="Run generative tasks from the terminal.")
    parser.add_argument("prompt", nargs="?", help="Prompt text; omit for interactive mode")
    parser.add_argument("--file", action="append", help="Attach a binary input (repeatable)")
    parser.add_argument("--schema", help="JSON file with a response schema literal (implies --batch)")
    parser.add_argument("--system", help="System instruction")
    parser.add_argument("--batch", action="store_true", help="Wait for the full answer instead of streaming")
    parser.add_argument("--provider", help="Provider name from the provider table")
    parser.add_argument("--model", help="Model override")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.prompt:
        return run_once(args)
    return interactive(args)


if __name__ == "__main__":
    sys.exit(main())
