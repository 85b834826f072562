"""Provider-specific transport clients for completion requests.

Architectural role:
    Executes HTTP requests against configured model providers and normalizes
    response materialization for streaming and non-streaming paths. These are
    the concrete completion services the orchestrator depends on.

Model invocation flow:
    `TaskOrchestrator` -> `complete_batch(...)` / `complete_stream(...)` ->
    provider dialect (Gemini / OpenAI-compatible) -> response text or streamed
    text chunks.

Retry behavior:
    No retry loop is implemented. Each HTTP call is attempted once with the
    configured timeout; retry policy belongs to callers.

Failure handling model:
    HTTP and network failures are raised as `UpstreamError` carrying an
    `ErrorKind` and a sanitized message (no response bodies, no keys). When a
    stream notices its cancellation token fired it raises `TransportCancelled`,
    so cancellation is never inferred from error text.

Determinism:
    Payload construction is deterministic for fixed inputs and configuration.
    Output text remains non-deterministic due to remote model inference.
"""

import base64
import json
import logging
from contextlib import asynccontextmanager

import httpx

from gentask.core.task_types import BinaryPart, ErrorKind, TextPart
from gentask.llm.provider_config import (
    DEFAULT_TEMPERATURE,
    GEMINI_STREAM_URL_TEMPLATE,
    GEMINI_URL_TEMPLATE,
    MODEL_NAME,
    REQUEST_TIMEOUT,
    Credentials,
)
from gentask.multimodal.encoder import to_data_uri
from gentask.schema.shapes import as_gemini_schema, as_json_schema


logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Transport-level failure mapped to an `ErrorKind`."""

    def __init__(self, kind: ErrorKind, message: str, status_code: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code


class TransportCancelled(Exception):
    """The request's cancellation token fired while the transport was active."""


def decode_part(part: BinaryPart) -> bytes:
    """Inverse of `multimodal.encoder.encode`: recover the payload bytes."""
    return base64.b64decode(part.data, validate=True)


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP status to the failure taxonomy."""
    if status_code in (401, 403):
        return ErrorKind.AUTH
    if status_code == 429:
        return ErrorKind.UPSTREAM_RATE_LIMIT
    return ErrorKind.UPSTREAM_SERVER


def _build_sanitized_http_error(provider_name: str, err: httpx.HTTPStatusError) -> UpstreamError:
    """Build provider-labeled HTTP error without exposing raw internals."""
    status_code = err.response.status_code
    label = str(provider_name or "provider").upper()
    return UpstreamError(
        classify_status(status_code),
        f"{label} HTTP ERROR ({status_code})",
        status_code,
    )


def _build_network_error(provider_name: str, err: httpx.TransportError) -> UpstreamError:
    label = str(provider_name or "provider").upper()
    if isinstance(err, httpx.TimeoutException):
        return UpstreamError(ErrorKind.UPSTREAM_NETWORK, f"{label} REQUEST TIMED OUT")
    return UpstreamError(ErrorKind.UPSTREAM_NETWORK, f"{label} NETWORK ERROR")


def _parse_sse_line(line: str):
    """Decode one SSE `data:` line; returns `None` for non-data lines."""
    if not line or line.startswith(":"):
        return None
    if line.startswith("data:"):
        line = line[5:].strip()
    if not line or line == "[DONE]":
        return None
    try:
        return json.loads(line)
    except ValueError:
        return None


class HttpCompletionService:
    """Shared HTTP plumbing for provider dialects.

    Subclasses implement `_batch_request`, `_stream_request`,
    `_extract_text`, and `_extract_delta`.
    """

    provider = "provider"

    def __init__(
        self,
        credentials: Credentials,
        *,
        url: str,
        model: str = MODEL_NAME,
        timeout: float = REQUEST_TIMEOUT,
        temperature: float | None = DEFAULT_TEMPERATURE,
        client: httpx.AsyncClient | None = None,
    ):
        self.credentials = credentials
        self.url = url
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self._client = client

    def __repr__(self):
        return f"{type(self).__name__}(provider={self.credentials.provider!r}, model={self.model!r})"

    def has_credentials(self) -> bool:
        return self.credentials.is_present

    @asynccontextmanager
    async def _http(self):
        """Yield the injected client, or a per-call client that is closed afterwards."""
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def complete_batch(
        self,
        parts,
        system_instruction=None,
        schema=None,
        *,
        token=None,
        model=None,
        temperature=None,
    ) -> str:
        """Run one round trip and return the full response text.

        Raises:
            UpstreamError: HTTP status or network failure.
            TransportCancelled: Token already cancelled before sending.
        """
        if token is not None and token.cancelled:
            raise TransportCancelled(token.reason)

        url, headers, payload = self._batch_request(
            parts, system_instruction, schema, model or self.model, self._temperature(temperature)
        )

        async with self._http() as client:
            try:
                response = await client.post(url, headers=headers, json=payload, timeout=self.timeout)
                response.raise_for_status()
            except httpx.HTTPStatusError as err:
                raise _build_sanitized_http_error(self.provider, err) from err
            except httpx.TransportError as err:
                raise _build_network_error(self.provider, err) from err

            try:
                data = response.json()
            except ValueError as err:
                raise UpstreamError(ErrorKind.UPSTREAM_SERVER, "Provider returned non-JSON body") from err

        return self._extract_text(data)

    async def complete_stream(
        self,
        parts,
        system_instruction=None,
        *,
        token=None,
        model=None,
        temperature=None,
    ):
        """Yield text chunks as they arrive (finite, not restartable).

        Raises:
            UpstreamError: HTTP status or network failure.
            TransportCancelled: Token fired while streaming.
        """
        if token is not None and token.cancelled:
            raise TransportCancelled(token.reason)

        url, headers, payload = self._stream_request(
            parts, system_instruction, model or self.model, self._temperature(temperature)
        )

        async with self._http() as client:
            try:
                async with client.stream(
                    "POST", url, headers=headers, json=payload, timeout=self.timeout
                ) as response:
                    response.raise_for_status()

                    async for line in response.aiter_lines():
                        if token is not None and token.cancelled:
                            raise TransportCancelled(token.reason)

                        data = _parse_sse_line(line.strip())
                        if data is None:
                            continue

                        delta = self._extract_delta(data)
                        if delta:
                            yield delta
            except httpx.HTTPStatusError as err:
                raise _build_sanitized_http_error(self.provider, err) from err
            except httpx.TransportError as err:
                raise _build_network_error(self.provider, err) from err

    def _temperature(self, override):
        return override if override is not None else self.temperature


class GeminiCompletionService(HttpCompletionService):
    """Gemini `generateContent` / `streamGenerateContent` dialect."""

    provider = "gemini"

    def _headers(self) -> dict:
        return {
            "x-goog-api-key": self.credentials.api_key or "",
            "Content-Type": "application/json",
        }

    def _payload(self, parts, system_instruction, schema, temperature) -> dict:
        gemini_parts = []
        for part in parts:
            if isinstance(part, TextPart):
                gemini_parts.append({"text": part.value})
            else:
                gemini_parts.append({"inlineData": {"mimeType": part.mime_type, "data": part.data}})

        payload = {"contents": [{"role": "user", "parts": gemini_parts}]}

        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}

        generation_config = {}
        if temperature is not None:
            generation_config["temperature"] = temperature
        if schema is not None:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseSchema"] = as_gemini_schema(schema)
        if generation_config:
            payload["generationConfig"] = generation_config

        return payload

    def _batch_request(self, parts, system_instruction, schema, model, temperature):
        url = GEMINI_URL_TEMPLATE.format(base=self.url, model=model)
        return url, self._headers(), self._payload(parts, system_instruction, schema, temperature)

    def _stream_request(self, parts, system_instruction, model, temperature):
        url = GEMINI_STREAM_URL_TEMPLATE.format(base=self.url, model=model)
        return url, self._headers(), self._payload(parts, system_instruction, None, temperature)

    @staticmethod
    def _candidate_text(data) -> str | None:
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not candidates:
            return None
        content = candidates[0].get("content") or {}
        texts = [p.get("text", "") for p in content.get("parts") or [] if isinstance(p, dict)]
        return "".join(texts)

    def _extract_text(self, data) -> str:
        text = self._candidate_text(data)
        if text is None:
            feedback = data.get("promptFeedback") if isinstance(data, dict) else None
            if feedback and feedback.get("blockReason"):
                raise UpstreamError(
                    ErrorKind.UPSTREAM_SERVER,
                    f"GEMINI BLOCKED PROMPT ({feedback['blockReason']})",
                )
            raise UpstreamError(ErrorKind.UPSTREAM_SERVER, "GEMINI RETURNED NO CANDIDATES")
        return text.strip()

    def _extract_delta(self, data) -> str | None:
        return self._candidate_text(data)


class OpenAICompatibleCompletionService(HttpCompletionService):
    """OpenAI-style `/chat/completions` dialect (openai, groq, local, ...)."""

    provider = "openai"

    def __init__(self, credentials: Credentials, **kwargs):
        super().__init__(credentials, **kwargs)
        self.provider = credentials.provider

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.credentials.api_key:
            headers["Authorization"] = f"Bearer {self.credentials.api_key}"
        return headers

    @staticmethod
    def _user_content(parts):
        if all(isinstance(part, TextPart) for part in parts):
            return "\n\n".join(part.value for part in parts)

        content = []
        for part in parts:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.value})
            elif part.mime_type.startswith("image/"):
                content.append({"type": "image_url", "image_url": {"url": to_data_uri(part)}})
            else:
                content.append({
                    "type": "file",
                    "file": {"filename": part.name or "upload", "file_data": to_data_uri(part)},
                })
        return content

    def _payload(self, parts, system_instruction, schema, model, temperature, stream) -> dict:
        messages = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": self._user_content(parts)})

        payload = {"model": model, "messages": messages, "stream": stream}
        if temperature is not None:
            payload["temperature"] = temperature
        if schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "response", "schema": as_json_schema(schema)},
            }
        return payload

    def _batch_request(self, parts, system_instruction, schema, model, temperature):
        payload = self._payload(parts, system_instruction, schema, model, temperature, stream=False)
        return self.url, self._headers(), payload

    def _stream_request(self, parts, system_instruction, model, temperature):
        payload = self._payload(parts, system_instruction, None, model, temperature, stream=True)
        return self.url, self._headers(), payload

    def _extract_text(self, data) -> str:
        try:
            return data["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as err:
            raise UpstreamError(ErrorKind.UPSTREAM_SERVER, "Provider response has no message content") from err

    def _extract_delta(self, data) -> str | None:
        """Extract delta text from common streaming response shapes."""
        if not isinstance(data, dict):
            return None

        if data.get("choices"):
            choice = data["choices"][0]

            if "delta" in choice and "content" in (choice["delta"] or {}):
                return choice["delta"]["content"]

            if "message" in choice and "content" in (choice["message"] or {}):
                return choice["message"]["content"]

            if "text" in choice:
                return choice["text"]

        elif "message" in data and "content" in (data["message"] or {}):
            return data["message"]["content"]

        return None
