"""Completion-service contract and factory.

Architectural role:
    Declares the capability the orchestrator depends on (`CompletionService`)
    and builds the configured concrete service with injected credentials.

Interaction with orchestration:
    `core.orchestrator.TaskOrchestrator` only sees the protocol below. Tests
    and alternative backends satisfy it with plain classes.
"""

from typing import AsyncIterator, Protocol, Sequence

import httpx

from gentask.core.task_types import Part
from gentask.llm.client import GeminiCompletionService, OpenAICompatibleCompletionService
from gentask.llm.provider_config import (
    GEMINI_API,
    MODEL_NAME,
    PROVIDER,
    Credentials,
    get_provider_config,
    load_credentials,
)


class CompletionService(Protocol):
    """Minimal interface required by the task orchestrator."""

    def has_credentials(self) -> bool:
        """Whether a usable credential was injected."""
        ...

    async def complete_batch(
        self,
        parts: Sequence[Part],
        system_instruction: str | None = None,
        schema=None,
        *,
        token=None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> str:
        """Return the complete response text in one round trip."""
        ...

    def complete_stream(
        self,
        parts: Sequence[Part],
        system_instruction: str | None = None,
        *,
        token=None,
        model: str | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[str]:
        """Return a finite async sequence of text chunks."""
        ...


def build_completion_service(
    provider: str | None = None,
    *,
    model: str | None = None,
    credentials: Credentials | None = None,
    client: httpx.AsyncClient | None = None,
) -> CompletionService:
    """Create the completion service for `provider` (default: configured one).

    Args:
        provider: Key into `provider_config.PROVIDERS`.
        model: Default model for requests without an override.
        credentials: Explicit credentials; resolved from config when omitted.
        client: Shared `httpx.AsyncClient` (per-call clients when omitted).

    Raises:
        ValueError: Unknown provider.
    """
    name = provider or PROVIDER
    config = get_provider_config(name)
    credentials = credentials or load_credentials(name)

    if config["api"] == GEMINI_API:
        service_cls = GeminiCompletionService
    else:
        service_cls = OpenAICompatibleCompletionService

    return service_cls(
        credentials,
        url=config["url"],
        model=model or MODEL_NAME,
        client=client,
    )
