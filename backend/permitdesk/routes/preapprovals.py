from __future__ import annotations
from flask import Blueprint, request
from permitdesk import get_db
from permitdesk.decorators.auth import require_permissions
from permitdesk.decorators.audit import audit_log
from permitdesk.errors import ValidationError
from permitdesk.models.visitor import PreApproval
from permitdesk.services import visitor_workflow as vw
from permitdesk.services.policy import assert_company_access, filter_query_by_company, scoped_company_id, current_user_id
from permitdesk.utils.listing import make_cached_list_response, apply_pagination, latest_timestamp
from permitdesk.utils.sorting import apply_multi_sort
from permitdesk.utils.timeutil import utcnow
from permitdesk.utils.validation import validate_status

preapprovals_bp = Blueprint('preapprovals', __name__)

SORTABLE = {
    'valid_from': PreApproval.valid_from,
    'valid_until': PreApproval.valid_until,
    'visitor_name': PreApproval.visitor_name,
    'updated_at': PreApproval.updated_at,
    'id': PreApproval.id,
}


@preapprovals_bp.post('')
@require_permissions('vms.preapproved.manage')
@audit_log('VMS.PREAPPROVAL.CREATE', entity='PreApproval', entity_id_key='id', meta_keys=['approval_code', 'company_id'])
def create_pre_approval():
    data = request.json or {}
    company_id = scoped_company_id()
    if company_id is None:
        company_id = data.get('company_id')
    if not isinstance(company_id, int) or isinstance(company_id, bool):
        raise ValidationError('company_id required')
    pa = vw.create_pre_approval(get_db(), company_id, data, current_user_id())
    return vw.serialize_pre_approval(pa), 201


@preapprovals_bp.get('')
@require_permissions('vms.preapproved.view')
def list_pre_approvals():
    session = get_db()
    q = filter_query_by_company(session.query(PreApproval), PreApproval.company_id)
    status = request.args.get('status')
    if status:
        q = q.filter(vw.pre_approval_status_filter(validate_status(status, PreApproval.ALL_STATUSES)))
    phone = request.args.get('phone')
    if phone:
        q = q.filter(PreApproval.phone == phone)
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, PreApproval.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return make_cached_list_response([vw.serialize_pre_approval(p) for p in rows], total, limit, offset, latest_timestamp(rows))


@preapprovals_bp.get('/check')
@require_permissions('vms.preapproved.view')
def check_pre_approval():
    phone = request.args.get('phone')
    if not phone:
        raise ValidationError('phone required')
    company_id = scoped_company_id() or request.args.get('company_id', type=int)
    if company_id is None:
        raise ValidationError('company_id required')
    pa = vw.find_matching_pre_approval(get_db(), company_id, phone, utcnow())
    return {'pre_approved': pa is not None, 'pre_approval': vw.serialize_pre_approval(pa) if pa else None}


def _scoped(pre_approval_id: int) -> PreApproval:
    pa = vw.get_pre_approval(get_db(), pre_approval_id)
    assert_company_access(pa.company_id)
    return pa


@preapprovals_bp.get('/<int:pre_approval_id>')
@require_permissions('vms.preapproved.view')
def get_pre_approval(pre_approval_id: int):
    return vw.serialize_pre_approval(_scoped(pre_approval_id))


@preapprovals_bp.post('/<int:pre_approval_id>/use')
@require_permissions('vms.checkin.manage')
@audit_log('VMS.PREAPPROVAL.USE', entity='PreApproval', entity_id_key='id', meta_keys=['status'])
def use_pre_approval(pre_approval_id: int):
    _scoped(pre_approval_id)
    return vw.serialize_pre_approval(vw.use_pre_approval(get_db(), pre_approval_id))


@preapprovals_bp.post('/<int:pre_approval_id>/cancel')
@require_permissions('vms.preapproved.manage')
@audit_log('VMS.PREAPPROVAL.CANCEL', entity='PreApproval', entity_id_key='id', meta_keys=['status'])
def cancel_pre_approval(pre_approval_id: int):
    _scoped(pre_approval_id)
    return vw.serialize_pre_approval(vw.cancel_pre_approval(get_db(), pre_approval_id))
