from __future__ import annotations
from typing import Any, Dict, Optional
from flask import request, has_request_context
from flask_jwt_extended import get_jwt_identity, get_jwt
from permitdesk import get_db
from permitdesk.models.audit import AuditLog


def _actor():
    try:
        ident = get_jwt_identity()
        claims = get_jwt() or {}
    except RuntimeError:
        # outside a verified request (e.g. seed scripts)
        return None, None
    return (int(ident) if ident is not None else None), claims.get('role')


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None):
    """Persist an audit log entry within the current DB session.

    Parameters:
      action: short action code e.g. PERMIT.APPROVE, ROLE.PERM.REPLACE, VMS.REQUEST.REJECT
      entity: optional entity name (Permit, Role, VisitorRequest, ...)
      entity_id: optional primary key string
      meta: additional JSON-safe dictionary (will be shallow copied)
    """
    session = get_db()
    actor, role = _actor()
    log = AuditLog(
        actor_user_id=actor or 0,
        actor_role=role,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(meta or {}),
        ip_address=request.remote_addr if has_request_context() else None,
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
