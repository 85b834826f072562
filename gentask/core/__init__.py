"""Core orchestration package.

Architectural role:
    Exposes the task lifecycle layer that sits between adapters (HTTP, CLI,
    UI callers) and the completion-service transports.

Composition:
    - `task_types`: request, part, outcome, and event data contracts.
    - `session`: single-flight sessions, cancellation tokens, registry.
    - `orchestrator`: dispatch, streaming accumulation, schema validation.

Determinism and side effects:
    Package import itself is deterministic and side-effect free.
"""
