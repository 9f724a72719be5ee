"""Path builders for the OpenAPI spec.

``_common.build_entity_paths`` emits list, single and action fragments for a
registry entry in a fixed order so the rendered document stays deterministic.
"""

__all__ = ["_common"]
