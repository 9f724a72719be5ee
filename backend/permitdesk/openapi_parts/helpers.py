"""Helper functions for the OpenAPI builder."""
from typing import Any, Dict, List, Optional

_TYPE_MAP = {
    "integer": {"type": "integer"},
    "string": {"type": "string"},
    "boolean": {"type": "boolean"},
    "array": {"type": "array", "items": {}},
    "date-time": {"type": "string", "format": "date-time"},
    "decimal": {"type": "string", "format": "decimal", "example": "444.50"},
}


def schema_from_fields(fields: Dict[str, str]) -> Dict[str, Any]:
    props: Dict[str, Any] = {}
    required: List[str] = []
    for name, kind in fields.items():
        nullable = kind.endswith("?")
        prop = dict(_TYPE_MAP[kind.rstrip("?")])
        if nullable:
            prop["nullable"] = True
        else:
            required.append(name)
        props[name] = prop
    return {"type": "object", "properties": props, "required": required}


def caching_headers() -> Dict[str, Any]:
    return {
        "ETag": {"schema": {"type": "string"}},
        "Last-Modified": {"schema": {"type": "string"}},
        "X-Last-Modified-ISO": {"schema": {"type": "string"}},
    }


def json_body(schema_ref: Optional[str] = None) -> Dict[str, Any]:
    schema = {"$ref": f"#/components/schemas/{schema_ref}"} if schema_ref else {"type": "object"}
    return {"application/json": {"schema": schema}}


def path_param(name: str, kind: str = "integer") -> Dict[str, Any]:
    return {"name": name, "in": "path", "required": True, "schema": {"type": kind}}


__all__ = ["schema_from_fields", "caching_headers", "json_body", "path_param"]
