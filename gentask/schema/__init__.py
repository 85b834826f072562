"""Response-schema package.

Architectural role:
    Declares the shapes structured output must satisfy and validates model
    text against them.

Module split:
    - `shapes`: shape data classes, builders, literal parsing, provider dialects.
    - `validator`: total JSON validator returning values, never raising.
"""
