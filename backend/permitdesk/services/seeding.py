"""Idempotent upsert of permissions and roles from the declarative table.

Permissions are keyed by ``key`` and roles by ``name``. Re-running updates
display fields and permission payloads in place; nothing is duplicated.
Malformed or dangling entries are reported as warnings and skipped so one bad
row never blocks the rest of the seed.
"""
from __future__ import annotations
import hashlib
import json
import re
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select

from permitdesk.constants.permissions import MODULE_ACTIONS, ROLE_PRESETS, WILDCARD
from permitdesk.models.authz import Permission, Role, User

KEY_RE = re.compile(r'^[a-z][a-z_]*(\.[a-z][a-z_]*)+$')


def new_report() -> Dict[str, Any]:
    return {
        'permissions_created': 0,
        'permissions_updated': 0,
        'roles_created': 0,
        'roles_updated': 0,
        'warnings': [],
    }


def seed_permissions(session, module_actions: Mapping[str, List[str]], report: Dict[str, Any]) -> Dict[str, Permission]:
    existing = {p.key: p for p in session.execute(select(Permission)).scalars()}
    for module, actions in module_actions.items():
        for action in actions:
            key = f"{module}.{action}"
            if not KEY_RE.match(key):
                report['warnings'].append(f"Malformed permission key skipped: {key!r}")
                continue
            description = key.replace('.', ' - ')
            perm = existing.get(key)
            if perm is None:
                perm = Permission(key=key, module=module, action=action, description=description)
                session.add(perm)
                existing[key] = perm
                report['permissions_created'] += 1
            elif (perm.module, perm.action, perm.description) != (module, action, description):
                perm.module, perm.action, perm.description = module, action, description
                report['permissions_updated'] += 1
    session.flush()
    return existing


def _resolve_role_keys(role_name: str, raw_keys, known: Mapping[str, Permission], report: Dict[str, Any]) -> Optional[List[str]]:
    if not isinstance(raw_keys, (list, tuple, set)):
        report['warnings'].append(f"Role {role_name}: permissions must be a list; role skipped")
        return None
    keys = []
    for key in raw_keys:
        if key == WILDCARD:
            keys.append(key)
        elif key in known:
            keys.append(key)
        else:
            report['warnings'].append(f"Role {role_name}: unknown permission {key!r} dropped")
    return sorted(set(keys))


def seed_roles(session, role_table: Mapping[str, Mapping[str, Any]], known: Mapping[str, Permission], report: Dict[str, Any]):
    existing = {r.name: r for r in session.execute(select(Role)).scalars()}
    for name, spec in role_table.items():
        if not isinstance(spec, Mapping) or not name:
            report['warnings'].append(f"Role entry {name!r} is malformed; skipped")
            continue
        keys = _resolve_role_keys(name, spec.get('permissions', []), known, report)
        if keys is None:
            continue
        display_name = spec.get('display_name') or name
        description = spec.get('description')
        role = existing.get(name)
        if role is None:
            session.add(Role(name=name, display_name=display_name, description=description, is_system=True, permissions=keys))
            report['roles_created'] += 1
            continue
        if (role.display_name, role.description, sorted(role.permissions or [])) != (display_name, description, keys):
            role.display_name = display_name
            role.description = description
            role.permissions = keys
            report['roles_updated'] += 1
        role.is_system = True
    session.flush()


def seed(session, role_table: Optional[Mapping[str, Mapping[str, Any]]] = None, module_actions: Optional[Mapping[str, List[str]]] = None) -> Dict[str, Any]:
    """Upsert permissions then roles; caller owns commit/rollback."""
    report = new_report()
    known = seed_permissions(session, module_actions if module_actions is not None else MODULE_ACTIONS, report)
    seed_roles(session, role_table if role_table is not None else ROLE_PRESETS, known, report)
    return report


def ensure_user(session, email: str, password: str, role_name: str, name: Optional[str] = None, company_id: Optional[int] = None) -> Optional[User]:
    """Create a user bound to role_name if the email is not taken yet."""
    role = session.execute(select(Role).where(Role.name == role_name)).scalar_one_or_none()
    if role is None:
        return None
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is not None:
        return user
    user = User(name=name or role.display_name or role_name, email=email, role_id=role.id, company_id=company_id, password_hash='')
    user.set_password(password)
    session.add(user)
    session.flush()
    return user


def role_permission_map(session) -> Dict[str, List[str]]:
    return {r.name: sorted(r.permissions or []) for r in session.execute(select(Role).order_by(Role.name)).scalars()}


def roles_checksum(mapping: Mapping[str, List[str]]) -> str:
    canonical = json.dumps(mapping, sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def validate_seeded(session) -> List[str]:
    """Problems in stored keys and role references; empty list means OK."""
    problems = []
    known = set(session.execute(select(Permission.key)).scalars())
    for key in sorted(known):
        module = key.split('.', 1)[0]
        if not KEY_RE.match(key):
            problems.append(f"Invalid key format: {key}")
        elif module not in MODULE_ACTIONS:
            problems.append(f"Unknown module '{module}' in key: {key}")
    for name, keys in role_permission_map(session).items():
        for key in keys:
            if key != WILDCARD and key not in known:
                problems.append(f"Role '{name}' references missing permission: {key}")
    return problems
