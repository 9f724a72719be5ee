from __future__ import annotations
from flask import Blueprint, request
from flask_jwt_extended import get_jwt, jwt_required
from sqlalchemy import select, or_
from permitdesk import get_db
from permitdesk.constants.permissions import WILDCARD
from permitdesk.decorators.auth import require_permissions
from permitdesk.decorators.audit import audit_log
from permitdesk.errors import Unauthorized
from permitdesk.models.authz import User
from permitdesk.models.permit import Permit, PermitApproval
from permitdesk.services.policy import current_user_id, has_permissions, has_any_permission
from permitdesk.services import permit_workflow as wf
from permitdesk.utils.listing import make_cached_list_response, apply_pagination, latest_timestamp
from permitdesk.utils.sorting import apply_multi_sort
from permitdesk.utils.validation import validate_status

permits_bp = Blueprint('permits', __name__)

SORTABLE = {
    'permit_number': Permit.permit_number,
    'status': Permit.status,
    'priority': Permit.priority,
    'start_date': Permit.start_date,
    'end_date': Permit.end_date,
    'updated_at': Permit.updated_at,
    'id': Permit.id,
}


def _actor() -> wf.Actor:
    user_id = current_user_id()
    actor = wf.actor_from_claims(user_id, get_jwt())
    user = get_db().get(User, user_id)
    if user:
        actor.name = user.name
    return actor


def _prefetch_permit(kw):
    p = get_db().get(Permit, kw.get('permit_id'))
    return wf.serialize_permit(p, include_approvals=False) if p else {}


def _assert_can_view(permit: Permit):
    if permit.created_by == current_user_id():
        return
    if has_any_permission('permits.view_all', 'approvals.view'):
        return
    raise Unauthorized('Permit belongs to another user')


@permits_bp.get('/work-types')
@require_permissions('permits.view')
def work_types():
    return {'work_types': wf.work_types_catalog()}


@permits_bp.get('')
@require_permissions('permits.view')
def list_permits():
    session = get_db()
    q = session.query(Permit)
    if not has_permissions('permits.view_all'):
        q = q.filter(Permit.created_by == current_user_id())
    status = request.args.get('status')
    if status:
        q = q.filter(Permit.status == validate_status(status, Permit.ALL_STATUSES))
    work_type = request.args.get('work_type')
    if work_type:
        q = q.filter(Permit.work_type == work_type)
    search = request.args.get('q')
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Permit.title.ilike(like), Permit.permit_number.ilike(like), Permit.location.ilike(like)))
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, Permit.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return make_cached_list_response([wf.serialize_permit(p) for p in rows], total, limit, offset, latest_timestamp(rows))


@permits_bp.post('')
@require_permissions('permits.create')
@audit_log('PERMIT.CREATE', entity='Permit', entity_id_key='id', meta_keys=['permit_number', 'work_type', 'status'])
def create_permit():
    permit = wf.create_permit(get_db(), request.json or {}, _actor())
    return wf.serialize_permit(permit), 201


@permits_bp.get('/<int:permit_id>')
@require_permissions('permits.view')
def get_permit(permit_id: int):
    permit = wf.get_permit(get_db(), permit_id)
    _assert_can_view(permit)
    return wf.serialize_permit(permit)


def _run_action(permit_id: int, action: str):
    permit = wf.apply_action(get_db(), permit_id, action, _actor(), request.get_json(silent=True) or {})
    return wf.serialize_permit(permit)


@permits_bp.post('/<int:permit_id>/approve')
@jwt_required()
@audit_log('PERMIT.APPROVE', entity='Permit', entity_id_key='id', diff_keys=['status'], pre_fetch=lambda a, kw: _prefetch_permit(kw), meta_keys=['status'])
def approve(permit_id: int):
    return _run_action(permit_id, 'approve')


@permits_bp.post('/<int:permit_id>/reject')
@jwt_required()
@audit_log('PERMIT.REJECT', entity='Permit', entity_id_key='id', diff_keys=['status'], pre_fetch=lambda a, kw: _prefetch_permit(kw), meta_keys=['status'])
def reject(permit_id: int):
    return _run_action(permit_id, 'reject')


@permits_bp.post('/<int:permit_id>/revoke')
@jwt_required()
@audit_log('PERMIT.REVOKE', entity='Permit', entity_id_key='id', diff_keys=['status'], pre_fetch=lambda a, kw: _prefetch_permit(kw))
def revoke(permit_id: int):
    return _run_action(permit_id, 'revoke')


@permits_bp.post('/<int:permit_id>/close')
@jwt_required()
@audit_log('PERMIT.CLOSE', entity='Permit', entity_id_key='id', diff_keys=['status'], pre_fetch=lambda a, kw: _prefetch_permit(kw))
def close(permit_id: int):
    return _run_action(permit_id, 'close')


@permits_bp.post('/<int:permit_id>/expire')
@jwt_required()
@audit_log('PERMIT.EXPIRE', entity='Permit', entity_id_key='id', diff_keys=['status'], pre_fetch=lambda a, kw: _prefetch_permit(kw))
def expire(permit_id: int):
    return _run_action(permit_id, 'expire')


@permits_bp.post('/<int:permit_id>/extend')
@jwt_required()
@audit_log('PERMIT.EXTEND', entity='Permit', entity_id_key='id', diff_keys=['end_date'], pre_fetch=lambda a, kw: _prefetch_permit(kw))
def extend(permit_id: int):
    return _run_action(permit_id, 'extend')


@permits_bp.post('/<int:permit_id>/reapprove')
@jwt_required()
@audit_log('PERMIT.REAPPROVE', entity='Permit', entity_id_key='id', diff_keys=['status'], pre_fetch=lambda a, kw: _prefetch_permit(kw))
def reapprove(permit_id: int):
    return _run_action(permit_id, 'reapprove')


@permits_bp.post('/<int:permit_id>/transfer')
@require_permissions('permits.transfer')
@audit_log('PERMIT.TRANSFER', entity='Permit', entity_id_key='id', diff_keys=['created_by'], pre_fetch=lambda a, kw: _prefetch_permit(kw))
def transfer(permit_id: int):
    session = get_db()
    permit = wf.get_permit(session, permit_id)
    if permit.created_by != current_user_id() and not has_permissions('permits.view_all'):
        raise Unauthorized('Only the owner can transfer this permit')
    data = request.json or {}
    permit = wf.transfer(session, permit_id, data.get('new_owner_id'), _actor(), data.get('reason'))
    return wf.serialize_permit(permit)


@permits_bp.post('/<int:permit_id>/remarks')
@require_permissions('permits.remarks')
@audit_log('PERMIT.REMARKS', entity='Permit', entity_id_key='id', meta_keys=['safety_remarks'])
def add_remarks(permit_id: int):
    data = request.json or {}
    permit = wf.add_safety_remarks(get_db(), permit_id, data.get('safety_remarks'), _actor())
    return wf.serialize_permit(permit)


@permits_bp.get('/<int:permit_id>/history')
@require_permissions('permits.view')
def permit_history(permit_id: int):
    session = get_db()
    _assert_can_view(wf.get_permit(session, permit_id))
    return {'data': [wf.serialize_history(h) for h in wf.history(session, permit_id)]}


def _inbox_role():
    """Approver role whose queue the caller sees; None means every role (admin)."""
    claims = get_jwt()
    if WILDCARD in claims.get('perms', []):
        return None
    return claims.get('role')


@permits_bp.get('/approvals')
@require_permissions('approvals.view')
def approvals_inbox():
    session = get_db()
    decision = validate_status(request.args.get('decision') or PermitApproval.DECISION_PENDING, PermitApproval.ALL_DECISIONS, 'decision')
    sub = select(PermitApproval.permit_id).where(PermitApproval.decision == decision)
    role = _inbox_role()
    if role:
        sub = sub.where(PermitApproval.approver_role == role)
    q = session.query(Permit).filter(Permit.id.in_(sub))
    if decision == PermitApproval.DECISION_PENDING:
        q = q.filter(Permit.status == Permit.STATUS_PENDING)
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, Permit.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return make_cached_list_response([wf.serialize_permit(p) for p in rows], total, limit, offset, latest_timestamp(rows))


@permits_bp.get('/approvals/stats')
@require_permissions('approvals.view')
def approvals_stats():
    role = _inbox_role()
    return {'role': role, 'counts': wf.approval_stats(get_db(), role)}
