"""Completion-service access package.

Architectural role:
    Provides provider configuration, credential resolution, and HTTP transport
    adapters used by the orchestrator to invoke generative backends.

Module split:
    - `provider_config`: environment-driven provider, model, and credentials.
    - `service`: `CompletionService` protocol and factory.
    - `client`: provider-specific HTTP transport and response parsing.
"""
