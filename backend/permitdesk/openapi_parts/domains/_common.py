"""Common helper for building entity paths with deterministic structure."""
from typing import Any, Dict, List
from ..constants import ACTION_REGISTRY, SORT_PARAM_MAP
from ..helpers import caching_headers, json_body, path_param


def build_entity_paths(schema_name: str, list_path: str, id_param: str, read_permission: str) -> Dict[str, Any]:
    paths: Dict[str, Any] = {}
    single_path = f"{list_path}/{{{id_param}}}"
    listing = list_path.rsplit("/", 1)[-1].replace("-", " ")

    # List endpoint
    paths[list_path] = {
        "get": {
            "summary": f"List {listing}",
            "parameters": [
                {"$ref": "#/components/parameters/LimitParam"},
                {"$ref": "#/components/parameters/OffsetParam"},
                {"$ref": f"#/components/parameters/{SORT_PARAM_MAP[schema_name]}"},
            ],
            "responses": {
                "200": {
                    "description": "OK",
                    "headers": caching_headers(),
                    "content": {
                        "application/json": {
                            "schema": {
                                "type": "object",
                                "properties": {
                                    "data": {"type": "array", "items": {"$ref": f"#/components/schemas/{schema_name}"}},
                                    "pagination": {"$ref": "#/components/schemas/Pagination"},
                                },
                            }
                        }
                    },
                },
                "304": {"description": "Not Modified"},
                "400": {"$ref": "#/components/responses/BadRequest"},
                "403": {"$ref": "#/components/responses/Forbidden"},
            },
            "x-required-permissions": [read_permission],
        },
        "head": {
            "summary": f"{schema_name} list validators",
            "responses": {
                "200": {"description": "Headers only", "headers": caching_headers()},
                "304": {"description": "Not Modified"},
            },
            "x-required-permissions": [read_permission],
        },
    }

    paths[single_path] = {
        "get": {
            "summary": f"Get {schema_name}",
            "parameters": [path_param(id_param)],
            "responses": {
                "200": {"description": "OK", "content": json_body(schema_name)},
                "403": {"$ref": "#/components/responses/Forbidden"},
                "404": {"$ref": "#/components/responses/NotFound"},
            },
            "x-required-permissions": [read_permission],
        },
    }

    # Action endpoints (POST)
    actions: List[Dict[str, str]] = ACTION_REGISTRY.get(schema_name, [])
    for spec in actions:
        paths[f"{single_path}/{spec['action']}"] = {
            "post": {
                "summary": spec["summary"],
                "parameters": [path_param(id_param)],
                "requestBody": {"required": False, "content": json_body()},
                "responses": {
                    "200": {"description": "OK", "content": json_body(schema_name)},
                    "400": {"$ref": "#/components/responses/BadRequest"},
                    "403": {"$ref": "#/components/responses/Forbidden"},
                    "404": {"$ref": "#/components/responses/NotFound"},
                },
                "x-required-permissions": [spec["permission"]],
            }
        }

    return paths


__all__ = ["build_entity_paths"]
