"""Permit lifecycle: creation, role-based approvals and follow-up actions.

``transition`` is a pure check over an in-memory Permit and decides what an
action would do. ``apply_action`` persists that decision with conditional
UPDATE statements (``... WHERE status = <expected>``) so two actors racing on
the same permit cannot both win; a zero rowcount is reported as
InvalidTransition.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from flask import current_app
from sqlalchemy import select, update, func

from permitdesk.constants.permissions import WILDCARD
from permitdesk.errors import InvalidTransition, NotFound, Unauthorized, ValidationError
from permitdesk.models.authz import User
from permitdesk.models.permit import Permit, PermitApproval, PermitActionHistory
from permitdesk.utils.numbering import claim_number, next_number, PERMIT_PREFIX
from permitdesk.utils.timeutil import utcnow, as_utc
from permitdesk.utils.validation import require_fields, parse_datetime, validate_status

WORK_TYPES: List[Dict[str, str]] = [
    {'value': 'CHEMICAL', 'label': 'Chemical Handling Permit', 'abbr': 'CHP'},
    {'value': 'COLD_WORK', 'label': 'Cold Work Permit', 'abbr': 'CWP'},
    {'value': 'CONFINED_SPACE', 'label': 'Confined Space Permit', 'abbr': 'CSP'},
    {'value': 'ELECTRICAL', 'label': 'Electrical Work Permit', 'abbr': 'EWP'},
    {'value': 'ENERGIZE', 'label': 'Energize Permit', 'abbr': 'EOMP'},
    {'value': 'EXCAVATION', 'label': 'Excavation Work Permit', 'abbr': 'EXP'},
    {'value': 'GENERAL', 'label': 'General Permit', 'abbr': 'GP'},
    {'value': 'HOT_WORK', 'label': 'Hot Work Permit', 'abbr': 'HWP'},
    {'value': 'PRESSURE_TESTING', 'label': 'Hydro Pressure Testing', 'abbr': 'HPT'},
    {'value': 'LIFTING', 'label': 'Lifting Permit', 'abbr': 'LP'},
    {'value': 'LOTO', 'label': 'LOTO Permit', 'abbr': 'LOTO'},
    {'value': 'RADIATION', 'label': 'Radiation Work Permit', 'abbr': 'RWP'},
    {'value': 'SWMS', 'label': 'Safe Work Method Statement', 'abbr': 'SWMS'},
    {'value': 'VEHICLE', 'label': 'Vehicle Work Permit', 'abbr': 'VWP'},
    {'value': 'WORKING_AT_HEIGHT', 'label': 'Work Height Permit', 'abbr': 'WHP'},
]
WORK_TYPE_VALUES = tuple(w['value'] for w in WORK_TYPES)

FIREMAN = 'FIREMAN'
SAFETY_OFFICER = 'SAFETY_OFFICER'
HIGH_RISK_WORK_TYPES = frozenset({'HOT_WORK', 'CONFINED_SPACE', 'ELECTRICAL', 'WORKING_AT_HEIGHT'})


def required_approver_roles(work_type: str) -> List[str]:
    if work_type in HIGH_RISK_WORK_TYPES:
        return [FIREMAN, SAFETY_OFFICER]
    return [FIREMAN]


def work_types_catalog() -> List[Dict[str, Any]]:
    return [dict(w, approvers=required_approver_roles(w['value'])) for w in WORK_TYPES]


@dataclass(frozen=True)
class ActionRule:
    allowed_from: FrozenSet[str]
    permission: str
    target: Optional[str]
    role: Optional[str] = None


ACTIONS: Dict[str, ActionRule] = {
    'approve': ActionRule(frozenset({Permit.STATUS_PENDING}), 'approvals.approve', None),
    'reject': ActionRule(frozenset({Permit.STATUS_PENDING}), 'approvals.approve', Permit.STATUS_REJECTED),
    'revoke': ActionRule(frozenset({Permit.STATUS_APPROVED}), 'permits.revoke', Permit.STATUS_REVOKED),
    'close': ActionRule(frozenset({Permit.STATUS_APPROVED}), 'permits.close', Permit.STATUS_CLOSED),
    'expire': ActionRule(frozenset({Permit.STATUS_APPROVED}), 'permits.expire', Permit.STATUS_EXPIRED),
    'extend': ActionRule(frozenset({Permit.STATUS_APPROVED, Permit.STATUS_PENDING}), 'permits.extend', None),
    'reapprove': ActionRule(frozenset({Permit.STATUS_REJECTED, Permit.STATUS_REVOKED}), 'permits.reapprove', Permit.STATUS_PENDING, role=FIREMAN),
}


@dataclass
class Actor:
    user_id: int
    role: Optional[str]
    permissions: FrozenSet[str] = frozenset()
    name: Optional[str] = None

    def can(self, key: str) -> bool:
        return WILDCARD in self.permissions or key in self.permissions


@dataclass
class Outcome:
    action: str
    previous_status: str
    new_status: str
    approval_id: Optional[int] = None
    decision: Optional[str] = None
    changes: Dict[str, Any] = field(default_factory=dict)


def transition(permit: Permit, action: str, actor_role: Optional[str], actor_permissions: Iterable[str], payload: Optional[Dict[str, Any]] = None) -> Outcome:
    """Decide the effect of action on permit without touching the database.

    Raises ValidationError for an unknown action or bad payload, Unauthorized
    when the actor lacks the permission key or role, and InvalidTransition
    when the permit's status does not allow the action.
    """
    payload = payload or {}
    rule = ACTIONS.get(action)
    if rule is None:
        raise ValidationError(f'Unknown permit action {action}', extra={'allowed': sorted(ACTIONS)})
    perms = set(actor_permissions)
    if WILDCARD not in perms and rule.permission not in perms:
        raise Unauthorized('Missing permission', extra={'required': [rule.permission]})
    if rule.role and actor_role != rule.role:
        raise Unauthorized(f'Only {rule.role} may {action} a permit')
    current = permit.status
    if current not in rule.allowed_from:
        raise InvalidTransition(
            f'Cannot {action} a permit in status {current}',
            extra={'from': current, 'action': action},
        )
    outcome = Outcome(action=action, previous_status=current, new_status=rule.target or current)

    if action in ('approve', 'reject'):
        mine = [a for a in permit.approvals if a.approver_role == actor_role]
        if not mine:
            raise Unauthorized(f'No approval is assigned to role {actor_role}')
        pending = [a for a in mine if a.decision == PermitApproval.DECISION_PENDING]
        if not pending:
            raise InvalidTransition(f'Approval for role {actor_role} already decided', extra={'decision': mine[0].decision})
        outcome.approval_id = pending[0].id
        if action == 'approve':
            outcome.decision = PermitApproval.DECISION_APPROVED
            outstanding = [a for a in permit.approvals if a.id != pending[0].id and a.decision != PermitApproval.DECISION_APPROVED]
            outcome.new_status = Permit.STATUS_PENDING if outstanding else Permit.STATUS_APPROVED
        else:
            outcome.decision = PermitApproval.DECISION_REJECTED
    elif action == 'extend':
        end_date = parse_datetime(payload.get('end_date'), 'end_date')
        if end_date <= as_utc(permit.end_date):
            raise ValidationError('end_date must be later than the current end date')
        outcome.changes['end_date'] = end_date
    elif action == 'close':
        checklist = payload.get('closure_checklist') or []
        if not isinstance(checklist, list):
            raise ValidationError('closure_checklist must be a list')
        outcome.changes['closure_checklist'] = checklist
    return outcome


def actor_from_claims(user_id: int, claims: Dict[str, Any]) -> Actor:
    return Actor(user_id=user_id, role=claims.get('role'), permissions=frozenset(claims.get('perms', [])))


def get_permit(session, permit_id: int) -> Permit:
    permit = session.get(Permit, permit_id)
    if not permit:
        raise NotFound('Permit not found')
    return permit


def create_permit(session, data: Dict[str, Any], actor: Actor) -> Permit:
    require_fields(data, 'title', 'work_type', 'start_date', 'end_date')
    work_type = validate_status(data['work_type'], WORK_TYPE_VALUES, 'work_type')
    priority = validate_status(data.get('priority') or 'MEDIUM', Permit.PRIORITIES, 'priority')
    start = parse_datetime(data['start_date'], 'start_date')
    end = parse_datetime(data['end_date'], 'end_date')
    if end <= start:
        raise ValidationError('end_date must be after start_date')
    for key in ('hazards', 'precautions'):
        if data.get(key) is not None and not isinstance(data[key], list):
            raise ValidationError(f'{key} must be a list')
    permit = Permit(
        permit_number=next_number(session, Permit.permit_number, PERMIT_PREFIX),
        title=data['title'].strip(),
        description=data.get('description'),
        location=data.get('location'),
        work_type=work_type,
        priority=priority,
        status=Permit.STATUS_PENDING,
        created_by=actor.user_id,
        start_date=start,
        end_date=end,
        hazards=data.get('hazards') or [],
        precautions=data.get('precautions') or [],
        closure_checklist=[],
    )
    for role in required_approver_roles(work_type):
        permit.approvals.append(PermitApproval(approver_role=role, decision=PermitApproval.DECISION_PENDING))
    session.add(permit)
    claim_number(session, permit.permit_number)
    _record_history(session, permit.id, 'CREATED', actor, None, None, Permit.STATUS_PENDING)
    session.commit()
    current_app.logger.info('Permit %s created by user %s (%s)', permit.permit_number, actor.user_id, work_type)
    return permit


def _record_history(session, permit_id: int, action: str, actor: Actor, comment: Optional[str], previous: Optional[str], new: Optional[str]):
    session.add(PermitActionHistory(
        permit_id=permit_id,
        action=action,
        performed_by=actor.user_id,
        performed_by_role=actor.role,
        comment=comment,
        previous_status=previous,
        new_status=new,
    ))


def _conditional_status_update(session, permit_id: int, expected: str, values: Dict[str, Any]):
    res = session.execute(
        update(Permit)
        .where(Permit.id == permit_id, Permit.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        session.rollback()
        raise InvalidTransition('Permit status changed concurrently', extra={'expected': expected})


def _decide_approval(session, outcome: Outcome, actor: Actor, comment: Optional[str], now: datetime):
    res = session.execute(
        update(PermitApproval)
        .where(PermitApproval.id == outcome.approval_id, PermitApproval.decision == PermitApproval.DECISION_PENDING)
        .values(
            decision=outcome.decision,
            comment=comment,
            approver_id=actor.user_id,
            approver_name=actor.name,
            approved_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        session.rollback()
        raise InvalidTransition('Approval already decided')


def apply_action(session, permit_id: int, action: str, actor: Actor, payload: Optional[Dict[str, Any]] = None) -> Permit:
    """Validate and persist a permit action, returning the refreshed permit."""
    payload = payload or {}
    permit = get_permit(session, permit_id)
    outcome = transition(permit, action, actor.role, actor.permissions, payload)
    comment = payload.get('comment') or payload.get('reason')
    now = utcnow()

    if action in ('approve', 'reject'):
        _decide_approval(session, outcome, actor, comment, now)
        if action == 'reject':
            _conditional_status_update(session, permit_id, Permit.STATUS_PENDING, {'status': Permit.STATUS_REJECTED})
        else:
            # recount after our own write so the last of two concurrent approvers flips the permit
            outstanding = session.execute(
                select(func.count()).select_from(PermitApproval).where(
                    PermitApproval.permit_id == permit_id,
                    PermitApproval.decision != PermitApproval.DECISION_APPROVED,
                )
            ).scalar_one()
            outcome.new_status = Permit.STATUS_PENDING
            if outstanding == 0:
                _conditional_status_update(session, permit_id, Permit.STATUS_PENDING, {'status': Permit.STATUS_APPROVED})
                outcome.new_status = Permit.STATUS_APPROVED
    elif action == 'reapprove':
        _conditional_status_update(session, permit_id, outcome.previous_status, {'status': Permit.STATUS_PENDING})
        session.execute(
            update(PermitApproval)
            .where(PermitApproval.permit_id == permit_id)
            .values(decision=PermitApproval.DECISION_PENDING, comment=None, approver_id=None, approver_name=None, approved_at=None)
            .execution_options(synchronize_session=False)
        )
    else:
        values: Dict[str, Any] = {'status': outcome.new_status}
        values.update(outcome.changes)
        if action == 'close':
            values['closed_at'] = now
        _conditional_status_update(session, permit_id, outcome.previous_status, values)

    _record_history(session, permit_id, action.upper(), actor, comment, outcome.previous_status, outcome.new_status)
    session.commit()
    session.expire_all()
    current_app.logger.info('Permit %s %s by user %s: %s -> %s', permit_id, action, actor.user_id, outcome.previous_status, outcome.new_status)
    return get_permit(session, permit_id)


def transfer(session, permit_id: int, new_owner_id: Any, actor: Actor, reason: Optional[str] = None) -> Permit:
    permit = get_permit(session, permit_id)
    try:
        new_owner_id = int(new_owner_id)
    except (TypeError, ValueError):
        raise ValidationError('new_owner_id must be an integer')
    owner = session.get(User, new_owner_id)
    if not owner or not owner.is_active:
        raise NotFound('New owner not found')
    previous_owner = permit.created_by
    permit.created_by = owner.id
    _record_history(session, permit.id, 'TRANSFERRED', actor, reason or f'owner {previous_owner} -> {owner.id}', permit.status, permit.status)
    session.commit()
    current_app.logger.info('Permit %s transferred from user %s to user %s', permit_id, previous_owner, owner.id)
    return permit


REMARKS_ALLOWED = (Permit.STATUS_APPROVED, Permit.STATUS_CLOSED)


def add_safety_remarks(session, permit_id: int, remarks: Any, actor: Actor) -> Permit:
    if not isinstance(remarks, str) or not remarks.strip():
        raise ValidationError('safety_remarks required')
    permit = get_permit(session, permit_id)
    if permit.status not in REMARKS_ALLOWED:
        raise InvalidTransition('Remarks can only be added to approved or closed permits', extra={'from': permit.status})
    permit.safety_remarks = remarks.strip()
    permit.remarks_added_by = actor.name or str(actor.user_id)
    permit.remarks_added_at = utcnow()
    _record_history(session, permit.id, 'REMARKS', actor, permit.safety_remarks, permit.status, permit.status)
    session.commit()
    return permit


def history(session, permit_id: int) -> List[PermitActionHistory]:
    get_permit(session, permit_id)
    stmt = select(PermitActionHistory).where(PermitActionHistory.permit_id == permit_id).order_by(PermitActionHistory.id.asc())
    return list(session.execute(stmt).scalars())


def approval_stats(session, role: Optional[str]) -> Dict[str, int]:
    """Decision counts for the approvals assigned to role (all roles when None)."""
    stmt = select(PermitApproval.decision, func.count()).group_by(PermitApproval.decision)
    if role:
        stmt = stmt.where(PermitApproval.approver_role == role)
    counts = {d: 0 for d in PermitApproval.ALL_DECISIONS}
    for decision, n in session.execute(stmt):
        counts[decision] = n
    counts['total'] = sum(counts[d] for d in PermitApproval.ALL_DECISIONS)
    return counts


def serialize_approval(a: PermitApproval) -> Dict[str, Any]:
    return {
        'id': a.id,
        'permit_id': a.permit_id,
        'approver_role': a.approver_role,
        'decision': a.decision,
        'comment': a.comment,
        'approver_id': a.approver_id,
        'approver_name': a.approver_name,
        'approved_at': as_utc(a.approved_at).isoformat() if a.approved_at else None,
    }


def serialize_permit(p: Permit, include_approvals: bool = True) -> Dict[str, Any]:
    data = {
        'id': p.id,
        'permit_number': p.permit_number,
        'title': p.title,
        'description': p.description,
        'location': p.location,
        'work_type': p.work_type,
        'priority': p.priority,
        'status': p.status,
        'created_by': p.created_by,
        'start_date': as_utc(p.start_date).isoformat() if p.start_date else None,
        'end_date': as_utc(p.end_date).isoformat() if p.end_date else None,
        'hazards': p.hazards or [],
        'precautions': p.precautions or [],
        'safety_remarks': p.safety_remarks,
        'remarks_added_by': p.remarks_added_by,
        'remarks_added_at': as_utc(p.remarks_added_at).isoformat() if p.remarks_added_at else None,
        'closure_checklist': p.closure_checklist or [],
        'closed_at': as_utc(p.closed_at).isoformat() if p.closed_at else None,
        'updated_at': as_utc(p.updated_at).isoformat() if p.updated_at else None,
    }
    if include_approvals:
        data['approvals'] = [serialize_approval(a) for a in p.approvals]
    return data


def serialize_history(h: PermitActionHistory) -> Dict[str, Any]:
    return {
        'id': h.id,
        'permit_id': h.permit_id,
        'action': h.action,
        'performed_by': h.performed_by,
        'performed_by_role': h.performed_by_role,
        'comment': h.comment,
        'previous_status': h.previous_status,
        'new_status': h.new_status,
        'created_at': as_utc(h.created_at).isoformat() if h.created_at else None,
    }
