"""Multimodal preprocessing package.

Architectural role:
- Turns caller-supplied binary inputs into encoded request parts.

Scope:
- Pure encoding only; no network calls and no filesystem access.
"""
