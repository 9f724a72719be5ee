"""Deterministic OpenAPI spec builder.

Scope:
- Auth endpoints: /iam/auth/login (POST), /iam/auth/me (GET)
- For each registered entity: list GET & HEAD with caching headers, single GET
  and POST action endpoints annotated with ``x-required-permissions``
- Public visitor endpoints (no bearer token) marked with an empty ``security``
- Remaining operations (exports, dashboards, role admin) declared inline

This is the canonical builder module; `permitdesk/openapi.py` re-exports from here.
"""
from typing import Any, Dict, List, Optional
from .openapi_parts.constants import (
    ENTITIES,
    TRANSITIONS,
    SORT_DETAILS,
    SCHEMA_FIELDS,
)
from .openapi_parts.helpers import schema_from_fields, json_body, path_param
from .openapi_parts.domains._common import build_entity_paths

__all__ = ["build_openapi_spec"]


def _op(summary: str, permission: Optional[str] = None, *, status: str = "200", schema: Optional[str] = None,
        params: Optional[List[Dict[str, Any]]] = None, body: bool = False, public: bool = False) -> Dict[str, Any]:
    op: Dict[str, Any] = {"summary": summary, "responses": {status: {"description": "OK", "content": json_body(schema)}}}
    if params:
        op["parameters"] = params
    if body:
        op["requestBody"] = {"required": True, "content": json_body(schema)}
        op["responses"]["400"] = {"$ref": "#/components/responses/BadRequest"}
    if permission:
        op["x-required-permissions"] = [permission]
        op["responses"]["403"] = {"$ref": "#/components/responses/Forbidden"}
    if public:
        op["security"] = []
    return op


def _query(name: str, kind: str = "string", required: bool = False) -> Dict[str, Any]:
    return {"name": name, "in": "query", "required": required, "schema": {"type": kind}}


def _extra_paths() -> Dict[str, Dict[str, Any]]:
    code = path_param("code", "string")
    number = path_param("request_number", "string")
    return {
        "/iam/auth/login": {"post": _op("Login", body=True, public=True)},
        "/iam/auth/me": {"get": _op("Current user with effective permissions")},
        "/iam/permissions": {"get": _op("List permission keys", "roles.view")},
        "/iam/roles": {
            "get": _op("List roles", "roles.view"),
            "post": _op("Create role", "roles.manage", status="201", body=True),
        },
        "/iam/roles/{role_id}": {
            "put": _op("Update role", "roles.manage", params=[path_param("role_id")], body=True),
            "delete": _op("Delete non-system role", "roles.manage", params=[path_param("role_id")]),
        },
        "/iam/roles/{role_id}/permissions": {
            "put": _op("Replace role permissions", "roles.manage", params=[path_param("role_id")], body=True),
        },
        "/iam/users": {"get": _op("List users", "users.view")},
        "/iam/users/{user_id}/role": {
            "put": _op("Assign role and company scope", "users.assign_role", params=[path_param("user_id")], body=True),
        },
        "/iam/audit/logs": {"get": _op("List audit log entries", "audit.view")},
        "/permits/work-types": {"get": _op("Work type catalogue with required approver roles", "permits.view")},
        "/permits/approvals": {"get": _op("Approval inbox for the caller's role", "approvals.view")},
        "/permits/approvals/stats": {"get": _op("Approval counts by decision", "approvals.view")},
        "/permits/{permit_id}/history": {
            "get": _op("Permit action history", "permits.view", params=[path_param("permit_id")]),
        },
        "/meters/types": {"get": _op("Meter types and default units", "meters.view")},
        "/meters/export": {
            "get": _op("Export readings as CSV or JSON", "meters.export",
                       params=[_query("format"), _query("meter_type"), _query("start_date"), _query("end_date")]),
        },
        "/meters/analytics": {
            "get": _op("Consumption analytics with alerts", "meters.view", params=[_query("period")]),
        },
        "/vms/checkin/companies": {"get": _op("Active companies for the kiosk", public=True)},
        "/vms/checkin/company/{code}": {"get": _op("Company by code", params=[code], public=True)},
        "/vms/checkin/submit": {"post": _op("Submit visitor check-in", status="201", body=True, public=True)},
        "/vms/checkin/status/{request_number}": {
            "get": _op("Public request status", params=[number], public=True),
        },
        "/vms/companies/{company_id}/settings": {
            "get": _op("Company settings", "vms.companies.view", params=[path_param("company_id")]),
            "put": _op("Update company settings", "vms.companies.manage", params=[path_param("company_id")], body=True),
        },
        "/vms/blacklist": {
            "get": _op("List blacklist entries", "vms.blacklist.view", schema="BlacklistEntry"),
            "post": _op("Add blacklist entry", "vms.blacklist.manage", status="201", schema="BlacklistEntry", body=True),
        },
        "/vms/blacklist/{entry_id}": {
            "delete": _op("Deactivate blacklist entry", "vms.blacklist.manage", schema="BlacklistEntry",
                          params=[path_param("entry_id")]),
        },
        "/vms/preapprovals/check": {
            "get": _op("Check phone for an active pre-approval", "vms.preapproved.view",
                       params=[_query("phone", required=True), _query("company_id", "integer")]),
        },
        "/dashboard/permits": {"get": _op("Permit counts by status", "dashboard.view")},
        "/dashboard/vms": {"get": _op("Visitor counts by status", "vms.dashboard.view")},
        "/healthz": {"get": _op("Liveness probe", public=True)},
    }


# POST create endpoints merged onto registered list paths
_CREATE_OPS = {
    "/permits": ("Create permit", "permits.create", "Permit"),
    "/meters/readings": ("Record meter reading", "meters.create", "MeterReading"),
    "/vms/preapprovals": ("Create pre-approval", "vms.preapproved.manage", "PreApproval"),
    "/vms/companies": ("Create company", "vms.companies.manage", "Company"),
}


def build_openapi_spec() -> Dict[str, Any]:
    schemas = {name: schema_from_fields(fields) for name, fields in SCHEMA_FIELDS.items()}
    for name, states in TRANSITIONS.items():
        schemas[name]["x-transitions"] = states

    components: Dict[str, Any] = {
        "schemas": schemas
        | {
            "Pagination": {
                "type": "object",
                "properties": {
                    "total": {"type": "integer"},
                    "limit": {"type": "integer"},
                    "offset": {"type": "integer"},
                    "returned": {"type": "integer"},
                },
                "required": ["total", "limit", "offset", "returned"],
            },
            "Error": {
                "type": "object",
                "properties": {
                    "error": {
                        "type": "object",
                        "properties": {
                            "status": {"type": "integer"},
                            "title": {"type": "string"},
                            "detail": {"type": "string"},
                            "code": {"type": "string"},
                        },
                        "required": ["status", "title", "detail"],
                    }
                },
                "required": ["error"],
            },
        },
        "responses": {
            "NotFound": {"description": "Not Found", "content": json_body("Error")},
            "BadRequest": {"description": "Validation error or invalid transition", "content": json_body("Error")},
            "Forbidden": {"description": "Missing permission, role or company scope", "content": json_body("Error")},
        },
        "securitySchemes": {"BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}},
        "parameters": {},
    }

    params = components["parameters"]
    params.update({
        "LimitParam": {"name": "limit", "in": "query", "schema": {"type": "integer", "default": 50, "maximum": 200}},
        "OffsetParam": {"name": "offset", "in": "query", "schema": {"type": "integer", "default": 0}},
    })
    for pname, desc in SORT_DETAILS.items():
        params[pname] = {"name": "sort", "in": "query", "schema": {"type": "string"}, "description": desc}

    paths: Dict[str, Any] = {}
    for schema_name, list_path, id_param, read_permission in ENTITIES:
        # deterministic merge: keys are unique per entity, order preserved by insertion
        for k, v in build_entity_paths(schema_name, list_path, id_param, read_permission).items():
            paths[k] = v

    for list_path, (summary, permission, schema_name) in _CREATE_OPS.items():
        paths[list_path]["post"] = _op(summary, permission, status="201", schema=schema_name, body=True)
    paths["/vms/companies/{company_id}"]["put"] = _op(
        "Update company", "vms.companies.manage", schema="Company", params=[path_param("company_id")], body=True,
    )

    for k, v in _extra_paths().items():
        paths.setdefault(k, {}).update(v)

    # Add operationIds & tags
    tag_desc: Dict[str, str] = {}
    for path, ops in paths.items():
        tag = path.split("/")[1].capitalize()
        for method, od in ops.items():
            rid = path.strip("/").replace("/", "_").replace("-", "_").replace("{", "").replace("}", "")
            od["operationId"] = f"auto_{method}_{rid}"
            od["tags"] = [tag]
        tag_desc[tag] = f"{tag} endpoints"

    return {
        "openapi": "3.0.3",
        "info": {"title": "PermitDesk API", "version": "0.1.0"},
        "paths": paths,
        "components": components,
        "security": [{"BearerAuth": []}],
        "tags": [{"name": n, "description": d} for n, d in sorted(tag_desc.items())],
    }
