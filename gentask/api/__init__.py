"""gentask adapter package.

Architectural role:
- Defines the external interaction boundary for HTTP and CLI interfaces.
- Performs transport-level validation and response shaping.
- Delegates the task lifecycle to the core layer.

Scope:
- Adapter concerns only; no direct model invocation logic here.
"""
