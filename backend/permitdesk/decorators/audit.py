"""Audit logging decorator for mutating route handlers.

Usage:

@audit_log('PERMIT.APPROVE', entity='Permit', entity_id_key='id', meta_keys=['status'])
def approve_permit(permit_id):
    ... return serialize(permit)

@audit_log('COMPANY.UPDATE', entity='Company', entity_id_arg='company_id',
           diff_keys=['require_approval', 'is_active'], pre_fetch=_company_snapshot)
def update_company(company_id): ...

Parameters:
  action: audit action code (e.g. ROLE.CREATE)
  entity: optional entity label (Permit, Role, VisitorRequest)
  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: path parameter used for entity_id when entity_id_key is absent.
  meta_keys: keys projected from the returned JSON into meta.
  meta_builder: callable (data, rv, args, kwargs) -> meta dict; overrides meta_keys.
  diff_keys / pre_fetch: snapshot taken before the handler runs; changed keys are
    stored under meta['changes'] as {'before', 'after'}.

The handler's return value may be dict, (dict, status) or (dict, status, headers).
Only successful handlers are audited; a raised error propagates untouched.
"""
from __future__ import annotations
from functools import wraps
from typing import Any, Callable, Iterable, Optional, Dict

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from permitdesk.services.audit import add_audit
from permitdesk import get_db


def _extract_payload(rv: Any):
    if isinstance(rv, tuple) and rv:
        return rv[0]
    return rv


def _diff(before: Dict[str, Any], after: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    changes = {}
    for k in keys:
        if k in before and k in after and before.get(k) != after.get(k):
            changes[k] = {'before': before.get(k), 'after': after.get(k)}
    return changes


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    commit: bool = True,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before_snapshot = pre_fetch(args, kwargs) if (diff_keys and pre_fetch) else None
            rv = fn(*args, **kwargs)
            data = _extract_payload(rv)
            if not isinstance(data, dict):
                add_audit(action, entity, kwargs.get(entity_id_arg) if entity_id_arg else None, None)
            else:
                entity_id = None
                if entity_id_key and entity_id_key in data:
                    entity_id = data.get(entity_id_key)
                elif entity_id_arg and entity_id_arg in kwargs:
                    entity_id = kwargs.get(entity_id_arg)
                meta = None
                if meta_builder:
                    meta = meta_builder(data, rv, args, kwargs)
                elif meta_keys:
                    meta = {k: data.get(k) for k in meta_keys if k in data}
                if diff_keys and isinstance(before_snapshot, dict):
                    changes = _diff(before_snapshot, data, diff_keys)
                    if changes:
                        meta = dict(meta or {})
                        meta['changes'] = changes
                add_audit(action, entity, entity_id, meta)
            if commit:
                session = get_db()
                try:
                    session.commit()
                except SQLAlchemyError:
                    # main write is already committed
                    session.rollback()
                    current_app.logger.warning('Audit write failed for %s', action, exc_info=True)
            return rv
        return wrapper
    return outer
