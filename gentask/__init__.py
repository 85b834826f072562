"""gentask: generative-task orchestration core.

Architectural role:
    One reusable request lifecycle for generative features: multimodal part
    encoding, single-flight sessions with deterministic cancellation, streamed
    text accumulation, and schema-validated structured extraction against an
    abstract completion service.

Package split:
    - `core`: task data model, sessions, orchestrator.
    - `multimodal`: binary payload encoding.
    - `schema`: response shapes and validator.
    - `llm`: configuration, credentials, HTTP completion services.
    - `api`: HTTP and CLI adapters.
"""

__version__ = "0.1.0"
