import asyncio
import io
import os
import sys

import pytest
from PIL import Image

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from gentask.core.task_types import TextPart  # noqa: E402


class ScriptedService:
    """Completion-service stub driven by per-prompt scripts.

    The first text part of a request selects the script. Stream scripts are
    lists of chunks; an `asyncio.Event` in the list pauses the stream until it
    is set. Exceptions in a script are raised at that point. Cancellation
    tokens are ignored, like a transport that cannot abort mid-flight.
    """

    def __init__(self, batch=None, streams=None, credentials=True):
        self.batch = batch or {}
        self.streams = streams or {}
        self.credentials = credentials
        self.calls = []

    def has_credentials(self):
        return self.credentials

    @staticmethod
    def _key(parts):
        for part in parts:
            if isinstance(part, TextPart):
                return part.value
        return None

    async def complete_batch(self, parts, system_instruction=None, schema=None, *, token=None, model=None, temperature=None):
        self.calls.append(("batch", tuple(parts), system_instruction, schema))
        script = self.batch[self._key(parts)]
        if isinstance(script, BaseException):
            raise script
        if isinstance(script, tuple):
            gate, text = script
            await gate.wait()
            return text
        return script

    async def complete_stream(self, parts, system_instruction=None, *, token=None, model=None, temperature=None):
        self.calls.append(("stream", tuple(parts), system_instruction, None))
        for item in self.streams[self._key(parts)]:
            if isinstance(item, asyncio.Event):
                await item.wait()
                continue
            if isinstance(item, BaseException):
                raise item
            yield item


@pytest.fixture
def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def jpeg_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(10, 120, 200)).save(buffer, format="JPEG")
    return buffer.getvalue()
