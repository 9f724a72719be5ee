"""Modular pieces for the programmatic OpenAPI builder.

Registries live in ``constants``, schema/header helpers in ``helpers`` and the
per-entity path generator in ``domains._common``.
"""

__all__ = [
    "constants",
    "helpers",
]
