"""Centralized constants for the OpenAPI spec builder.

Keeping the registries here leaves `openapi_builder.py` short. Tests rely on
deterministic ordering and on the action permissions matching the runtime
checks.
"""
from typing import Dict, List, Tuple

# Entity registry: (SchemaName, list path, id param, read permission)
ENTITIES: List[Tuple[str, str, str, str]] = [
    ("Permit", "/permits", "permit_id", "permits.view"),
    ("MeterReading", "/meters/readings", "reading_id", "meters.view"),
    ("VisitorRequest", "/vms/checkin/requests", "request_id", "vms.checkin.view"),
    ("PreApproval", "/vms/preapprovals", "pre_approval_id", "vms.preapproved.view"),
    ("Company", "/vms/companies", "company_id", "vms.companies.view"),
]

# Declarative registry for state-changing POST endpoints under a single resource.
ACTION_REGISTRY: Dict[str, List[Dict[str, str]]] = {
    "Permit": [
        {"action": "approve", "summary": "Record the caller's role approval", "permission": "approvals.approve"},
        {"action": "reject", "summary": "Reject pending permit", "permission": "approvals.approve"},
        {"action": "revoke", "summary": "Revoke approved permit", "permission": "permits.revoke"},
        {"action": "close", "summary": "Close approved permit with checklist", "permission": "permits.close"},
        {"action": "expire", "summary": "Mark approved permit expired", "permission": "permits.expire"},
        {"action": "extend", "summary": "Push out permit end date", "permission": "permits.extend"},
        {"action": "reapprove", "summary": "Send rejected or revoked permit back to pending", "permission": "permits.reapprove"},
        {"action": "transfer", "summary": "Hand permit to another user", "permission": "permits.transfer"},
        {"action": "remarks", "summary": "Record safety remarks", "permission": "permits.remarks"},
    ],
    "MeterReading": [
        {"action": "verify", "summary": "Verify meter reading", "permission": "meters.verify"},
    ],
    "VisitorRequest": [
        {"action": "approve", "summary": "Approve visitor request", "permission": "vms.checkin.approve"},
        {"action": "reject", "summary": "Reject visitor request", "permission": "vms.checkin.approve"},
        {"action": "check-in", "summary": "Check visitor in", "permission": "vms.checkin.manage"},
        {"action": "check-out", "summary": "Check visitor out", "permission": "vms.checkin.manage"},
    ],
    "PreApproval": [
        {"action": "use", "summary": "Consume pre-approval", "permission": "vms.checkin.manage"},
        {"action": "cancel", "summary": "Cancel pre-approval", "permission": "vms.preapproved.manage"},
    ],
}

# Status values documented as x-transitions on the entity schema.
TRANSITIONS: Dict[str, List[str]] = {
    "Permit": ["PENDING", "APPROVED", "REJECTED", "REVOKED", "CLOSED", "EXPIRED"],
    "VisitorRequest": ["PENDING", "APPROVED", "CHECKED_IN", "CHECKED_OUT", "REJECTED", "EXPIRED"],
    "PreApproval": ["ACTIVE", "USED", "CANCELLED", "EXPIRED"],
}

SORT_PARAM_MAP = {
    "Permit": "SortPermitsParam",
    "MeterReading": "SortReadingsParam",
    "VisitorRequest": "SortVisitorRequestsParam",
    "PreApproval": "SortPreApprovalsParam",
    "Company": "SortCompaniesParam",
}

SORT_DETAILS = {
    "SortPermitsParam": "Multi-field sort (permit_number,status,priority,start_date,end_date,updated_at,id). Prefix - for desc",
    "SortReadingsParam": "Multi-field sort (reading_date,meter_type,meter_name,reading_value,updated_at,id). Prefix - for desc",
    "SortVisitorRequestsParam": "Multi-field sort (submitted_at,visitor_name,status,updated_at,id). Prefix - for desc",
    "SortPreApprovalsParam": "Multi-field sort (valid_from,valid_until,visitor_name,updated_at,id). Prefix - for desc",
    "SortCompaniesParam": "Multi-field sort (name,code,id). Prefix - for desc",
}

# Field name -> OpenAPI type (suffix '?' marks nullable). Decimals travel as strings.
SCHEMA_FIELDS: Dict[str, Dict[str, str]] = {
    "Permit": {
        "id": "integer", "permit_number": "string", "title": "string", "description": "string?",
        "location": "string", "work_type": "string", "priority": "string", "status": "string",
        "created_by": "integer", "start_date": "date-time", "end_date": "date-time",
        "hazards": "array", "precautions": "array", "safety_remarks": "string?",
        "closure_checklist": "array", "closed_at": "date-time?", "updated_at": "date-time",
        "approvals": "array",
    },
    "PermitHistory": {
        "id": "integer", "permit_id": "integer", "action": "string", "performed_by": "integer",
        "performed_by_role": "string?", "comment": "string?", "previous_status": "string?",
        "new_status": "string?", "created_at": "date-time",
    },
    "MeterReading": {
        "id": "integer", "meter_type": "string", "meter_name": "string", "meter_serial": "string?",
        "location": "string?", "reading_value": "decimal", "unit": "string", "previous_reading": "decimal?",
        "consumption": "decimal?", "reading_date": "date-time", "notes": "string?",
        "site_engineer_id": "integer", "is_verified": "boolean", "verified_by": "integer?",
        "verified_at": "date-time?",
    },
    "VisitorRequest": {
        "id": "integer", "request_number": "string", "status": "string", "company_id": "integer",
        "company_name": "string?", "visitor_name": "string", "phone": "string", "email": "string?",
        "visitor_company": "string?", "purpose": "string", "host_name": "string?",
        "requires_approval": "boolean", "pre_approval_id": "integer?", "submitted_at": "date-time",
        "expires_at": "date-time?", "processed_at": "date-time?", "processed_by": "integer?",
        "rejection_reason": "string?", "check_in_time": "date-time?", "check_out_time": "date-time?",
        "qr_url": "string",
    },
    "PreApproval": {
        "id": "integer", "approval_code": "string", "company_id": "integer", "status": "string",
        "visitor_name": "string", "phone": "string", "purpose": "string?", "valid_from": "date-time",
        "valid_until": "date-time", "created_by": "integer", "used_at": "date-time?",
    },
    "Company": {
        "id": "integer", "code": "string", "name": "string", "display_name": "string?",
        "require_approval": "boolean",
    },
    "BlacklistEntry": {
        "id": "integer", "company_id": "integer?", "is_global": "boolean", "phone": "string?",
        "id_proof_number": "string?", "visitor_name": "string?", "reason": "string",
        "is_active": "boolean", "created_by": "integer", "updated_at": "date-time",
    },
}

__all__ = [
    "ENTITIES",
    "ACTION_REGISTRY",
    "TRANSITIONS",
    "SORT_PARAM_MAP",
    "SORT_DETAILS",
    "SCHEMA_FIELDS",
]
