import json

import pytest

from gentask.api import cli
from gentask.core.orchestrator import TaskOrchestrator
from gentask.core.task_types import BinaryPart, Cancelled, ErrorKind, Failed

from conftest import ScriptedService


@pytest.fixture
def service():
    service = ScriptedService(
        batch={"summarize": '{"summary": "ok"}', "plain": "batch text"},
        streams={"hello": ["He", "llo"]},
    )
    cli.set_orchestrator(TaskOrchestrator(service))
    yield service
    cli.set_orchestrator(None)


def test_stream_prompt_prints_deltas(service, capsys):
    assert cli.main(["hello"]) == 0
    assert capsys.readouterr().out == "Hello\n"


def test_batch_prompt_prints_text(service, capsys):
    assert cli.main(["plain", "--batch", "--system", "Be brief."]) == 0
    assert capsys.readouterr().out == "batch text\n"
    assert service.calls[0][2] == "Be brief."


def test_schema_file_implies_batch(service, capsys, tmp_path):
    schema_path = tmp_path / "summary.json"
    schema_path.write_text(json.dumps({"type": "OBJECT", "properties": {"summary": {"type": "STRING"}}, "required": ["summary"]}))

    assert cli.main(["summarize", "--schema", str(schema_path)]) == 0
    assert json.loads(capsys.readouterr().out) == {"summary": "ok"}
    assert service.calls[0][0] == "batch"


def test_bad_schema_file_exits_2(service, capsys, tmp_path):
    schema_path = tmp_path / "bad.json"
    schema_path.write_text('{"type": "ARRAY"}')

    assert cli.main(["summarize", "--schema", str(schema_path)]) == 2
    assert "Cannot load schema" in capsys.readouterr().err
    assert service.calls == []


def test_attachment_is_sent_before_prompt(service, tmp_path, png_bytes):
    image_path = tmp_path / "site.png"
    image_path.write_bytes(png_bytes)

    assert cli.main(["plain", "--batch", "--file", str(image_path)]) == 0
    parts = service.calls[0][1]
    assert isinstance(parts[0], BinaryPart)
    assert parts[0].mime_type == "image/png"
    assert parts[1].value == "plain"


def test_missing_attachment_exits_2(service, capsys, tmp_path):
    assert cli.main(["plain", "--file", str(tmp_path / "missing.png")]) == 2
    assert "unreadable-file" in capsys.readouterr().err


def test_failed_outcome_goes_to_stderr(capsys):
    assert cli.render_outcome(Failed(ErrorKind.AUTH, "Completion service credential is not configured")) == 1
    assert "Error (auth)" in capsys.readouterr().err


def test_cancelled_outcome_exit_code(capsys):
    assert cli.render_outcome(Cancelled("interrupted"), streamed=True) == 130
    assert "cancelled" in capsys.readouterr().out


def test_interactive_commands(service, capsys, monkeypatch, tmp_path, png_bytes):
    image_path = tmp_path / "site.png"
    image_path.write_bytes(png_bytes)
    inputs = iter(["/system Be brief.", f"/attach {image_path}", "hello", "exit"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(inputs))

    assert cli.main([]) == 0

    out = capsys.readouterr().out
    assert "Attached" in out
    assert "Hello" in out
    kind, parts, system_instruction, _ = service.calls[0]
    assert kind == "stream"
    assert isinstance(parts[0], BinaryPart)
    assert system_instruction == "Be brief."
