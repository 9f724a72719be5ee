"""Single source of truth for permission keys and seeded roles.

Keys are dotted ``module.action`` strings (``permits.approve``,
``vms.checkin.approve``). Extend cautiously; never rename a key silently,
add a new one and migrate role payloads instead.
"""
from __future__ import annotations
from typing import Dict, List, Any

MODULE_ACTIONS: Dict[str, List[str]] = {
    'dashboard': ['view'],
    'permits': ['view', 'view_all', 'create', 'edit_own', 'extend', 'revoke', 'close', 'expire', 'reapprove', 'transfer', 'remarks'],
    'approvals': ['view', 'approve'],
    'meters': ['view', 'view_all', 'create', 'verify', 'export'],
    'users': ['view', 'assign_role'],
    'roles': ['view', 'manage'],
    'audit': ['view'],
    'vms': [
        'dashboard.view',
        'companies.view', 'companies.manage',
        'checkin.view', 'checkin.approve', 'checkin.manage',
        'preapproved.view', 'preapproved.manage',
        'blacklist.view', 'blacklist.manage',
    ],
}

WILDCARD = '*'


def build_all_permission_keys() -> List[str]:
    keys: List[str] = []
    for module, actions in MODULE_ACTIONS.items():
        for act in actions:
            keys.append(f"{module}.{act}")
    return keys


ALL_PERMISSION_KEYS = build_all_permission_keys()

# Role name -> display fields + permission payload. Seeded roles are system roles.
ROLE_PRESETS: Dict[str, Dict[str, Any]] = {
    'ADMIN': {
        'display_name': 'Administrator',
        'description': 'Full system access with all permissions',
        'permissions': [WILDCARD],
    },
    'FIREMAN': {
        'display_name': 'Fireman',
        'description': 'Approves or rejects permits and re-approves revoked permits',
        'permissions': [
            'dashboard.view',
            'permits.view', 'permits.view_all', 'permits.extend', 'permits.revoke', 'permits.close',
            'permits.expire', 'permits.reapprove',
            'approvals.view', 'approvals.approve',
            'meters.view', 'meters.view_all', 'meters.verify', 'meters.export',
        ],
    },
    'SAFETY_OFFICER': {
        'display_name': 'Safety Officer',
        'description': 'Co-approves high risk work and records safety remarks',
        'permissions': [
            'dashboard.view',
            'permits.view', 'permits.view_all', 'permits.remarks', 'permits.close',
            'approvals.view', 'approvals.approve',
            'meters.view', 'meters.view_all', 'meters.verify',
        ],
    },
    'REQUESTOR': {
        'display_name': 'Requestor',
        'description': 'Creates and tracks own permits',
        'permissions': [
            'dashboard.view',
            'permits.view', 'permits.create', 'permits.edit_own', 'permits.transfer',
        ],
    },
    'SITE_ENGINEER': {
        'display_name': 'Site Engineer',
        'description': 'Records meter readings',
        'permissions': [
            'dashboard.view',
            'meters.view', 'meters.create', 'meters.export',
        ],
    },
    'VMS_ADMIN': {
        'display_name': 'VMS Administrator',
        'description': 'Manages companies, blacklist and all visitor requests',
        'permissions': [
            'vms.dashboard.view',
            'vms.companies.view', 'vms.companies.manage',
            'vms.checkin.view', 'vms.checkin.approve', 'vms.checkin.manage',
            'vms.preapproved.view', 'vms.preapproved.manage',
            'vms.blacklist.view', 'vms.blacklist.manage',
            'audit.view',
        ],
    },
    'VMS_RECEPTION': {
        'display_name': 'VMS Reception',
        'description': 'Approves or rejects visitor requests for a company',
        'permissions': [
            'vms.dashboard.view',
            'vms.companies.view',
            'vms.checkin.view', 'vms.checkin.approve',
            'vms.preapproved.view', 'vms.preapproved.manage',
            'vms.blacklist.view',
        ],
    },
    'VMS_GUARD': {
        'display_name': 'VMS Security Guard',
        'description': 'Checks visitors in and out at the gate',
        'permissions': [
            'vms.dashboard.view',
            'vms.checkin.view', 'vms.checkin.manage',
            'vms.preapproved.view',
            'vms.blacklist.view',
        ],
    },
}
