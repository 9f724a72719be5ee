from __future__ import annotations
from typing import Iterable, List, Optional, Set
from flask_jwt_extended import get_jwt, get_jwt_identity
from sqlalchemy import select
from permitdesk.models.authz import User, Role, Permission
from permitdesk.constants.permissions import WILDCARD
from permitdesk.errors import Unauthorized
from permitdesk import get_db


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def current_user_id() -> Optional[int]:
    ident = get_jwt_identity()
    return int(ident) if ident is not None else None


def permissions_grant(perms: Iterable[str], *codes: str) -> bool:
    perms = set(perms)
    if WILDCARD in perms:
        return True
    return all(c in perms for c in codes)


def has_permissions(*codes: str) -> bool:
    return permissions_grant(current_permissions(), *codes)


def has_any_permission(*codes: str) -> bool:
    perms = current_permissions()
    return WILDCARD in perms or any(c in perms for c in codes)


def expand_role_permissions(role: Optional[Role]) -> List[str]:
    """Resolve a role's stored keys; '*' expands to every known key."""
    if role is None:
        return []
    keys = set(role.permissions or [])
    if WILDCARD in keys:
        session = get_db()
        keys = set(session.execute(select(Permission.key)).scalars())
        keys.add(WILDCARD)
    return sorted(keys)


def compute_effective_permissions(user_id: int):
    session = get_db()
    user = session.get(User, user_id)
    if not user:
        return {'role': None, 'perms': [], 'company_id': None}
    return {
        'role': user.role.name if user.role else None,
        'perms': expand_role_permissions(user.role),
        'company_id': user.company_id,
    }


def build_claims(user: User) -> dict:
    eff = compute_effective_permissions(user.id)
    return {'perms': eff['perms'], 'role': eff['role'], 'company_id': eff['company_id']}


def scoped_company_id() -> Optional[int]:
    """Company a VMS user is limited to, or None for unscoped users."""
    return get_jwt().get('company_id')


def assert_company_access(company_id: int):
    scoped = scoped_company_id()
    if scoped is None:
        return
    if scoped != company_id:
        raise Unauthorized('Company access denied')


def filter_query_by_company(query, company_column):
    scoped = scoped_company_id()
    if scoped is not None:
        return query.where(company_column == scoped)
    return query
