"""Test seeding utilities to reduce duplication.

The session-wide database is seeded once with the system roles (see
conftest); these helpers add users bound to those roles, ad-hoc roles and
VMS companies. Every helper is idempotent on its natural key so tests can
share fixtures across the suite.
"""
from typing import Iterable, Optional
from flask import current_app
from sqlalchemy import select
from permitdesk import get_db
from permitdesk.models.authz import User, Role
from permitdesk.models.visitor import Company
from permitdesk.services import seeding


def ensure_user(email: str, role_name: str, company_id: Optional[int] = None, password: str = 'pw', name: Optional[str] = None) -> User:
    """User bound to a seeded (or ad-hoc) role; returns the existing row when the email is taken."""
    session = get_db()
    user = seeding.ensure_user(session, email, password, role_name, name=name or email.split('@')[0], company_id=company_id)
    if user is None:
        raise ValueError(f"Role {role_name} is not seeded")
    session.commit()
    return user


def ensure_role(name: str, perm_keys: Iterable[str] = (), is_system: bool = False) -> Role:
    session = get_db()
    role = session.execute(select(Role).where(Role.name == name)).scalar_one_or_none()
    if not role:
        role = Role(name=name, display_name=name.title(), is_system=is_system, permissions=sorted(set(perm_keys)))
        session.add(role)
        session.commit()
    return role


def ensure_company(code: str, name: Optional[str] = None, require_approval: bool = True, is_active: bool = True,
                   request_ttl_hours: Optional[int] = None) -> Company:
    session = get_db()
    company = session.execute(select(Company).where(Company.code == code)).scalar_one_or_none()
    if not company:
        company = Company(code=code, name=name or code.title(), is_active=is_active,
                          require_approval=require_approval, request_ttl_hours=request_ttl_hours)
        session.add(company)
        session.commit()
        # keep the public company picker consistent with direct inserts
        current_app.extensions['company_cache'].invalidate()
    return company


__all__ = ['ensure_user', 'ensure_role', 'ensure_company']
