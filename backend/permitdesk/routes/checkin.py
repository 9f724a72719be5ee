from __future__ import annotations
from flask import Blueprint, request
from permitdesk import get_db
from permitdesk.decorators.auth import require_permissions
from permitdesk.decorators.audit import audit_log
from permitdesk.models.visitor import VisitorRequest
from permitdesk.services import visitor_workflow as vw
from permitdesk.services.companies import active_companies, serialize_company
from permitdesk.services.policy import assert_company_access, filter_query_by_company, current_user_id
from permitdesk.utils.listing import make_cached_list_response, apply_pagination, latest_timestamp
from permitdesk.utils.sorting import apply_multi_sort
from permitdesk.utils.validation import validate_status

checkin_bp = Blueprint('checkin', __name__)

SORTABLE = {
    'submitted_at': VisitorRequest.submitted_at,
    'visitor_name': VisitorRequest.visitor_name,
    'status': VisitorRequest.status,
    'updated_at': VisitorRequest.updated_at,
    'id': VisitorRequest.id,
}

# --- Public (no auth) ---

@checkin_bp.get('/companies')
def public_companies():
    return {'data': active_companies(get_db())}


@checkin_bp.get('/company/<code>')
def public_company(code: str):
    company = vw.get_company_by_code(get_db(), code)
    return serialize_company(company, public=True)


@checkin_bp.post('/submit')
def submit():
    data = request.json or {}
    req = vw.submit_check_in(get_db(), data.get('company_code'), data)
    body = vw.serialize_public_status(req)
    body['requires_approval'] = req.requires_approval
    return body, 201


@checkin_bp.get('/status/<request_number>')
def status(request_number: str):
    req = vw.get_request_by_number(get_db(), request_number)
    return vw.serialize_public_status(req)

# --- Staff ---

@checkin_bp.get('/requests')
@require_permissions('vms.checkin.view')
def list_requests():
    session = get_db()
    q = filter_query_by_company(session.query(VisitorRequest), VisitorRequest.company_id)
    company_id = request.args.get('company_id', type=int)
    if company_id is not None:
        assert_company_access(company_id)
        q = q.filter(VisitorRequest.company_id == company_id)
    status_arg = request.args.get('status')
    if status_arg:
        q = q.filter(vw.visitor_status_filter(validate_status(status_arg, VisitorRequest.ALL_STATUSES)))
    phone = request.args.get('phone')
    if phone:
        q = q.filter(VisitorRequest.phone == phone)
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, VisitorRequest.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return make_cached_list_response([vw.serialize_request(r) for r in rows], total, limit, offset, latest_timestamp(rows))


@checkin_bp.get('/requests/<int:request_id>')
@require_permissions('vms.checkin.view')
def get_request(request_id: int):
    req = vw.get_request(get_db(), request_id)
    assert_company_access(req.company_id)
    return vw.serialize_request(req)


def _scoped_request(request_id: int) -> VisitorRequest:
    req = vw.get_request(get_db(), request_id)
    assert_company_access(req.company_id)
    return req


@checkin_bp.post('/requests/<int:request_id>/approve')
@require_permissions('vms.checkin.approve')
@audit_log('VMS.REQUEST.APPROVE', entity='VisitorRequest', entity_id_key='id', meta_keys=['request_number', 'status'])
def approve_request(request_id: int):
    _scoped_request(request_id)
    req = vw.decide(get_db(), request_id, 'APPROVE', current_user_id())
    return vw.serialize_request(req)


@checkin_bp.post('/requests/<int:request_id>/reject')
@require_permissions('vms.checkin.approve')
@audit_log('VMS.REQUEST.REJECT', entity='VisitorRequest', entity_id_key='id', meta_keys=['request_number', 'status', 'rejection_reason'])
def reject_request(request_id: int):
    _scoped_request(request_id)
    data = request.get_json(silent=True) or {}
    req = vw.decide(get_db(), request_id, 'REJECT', current_user_id(), data.get('reason'))
    return vw.serialize_request(req)


@checkin_bp.post('/requests/<int:request_id>/check-in')
@require_permissions('vms.checkin.manage')
@audit_log('VMS.REQUEST.CHECK_IN', entity='VisitorRequest', entity_id_key='id', meta_keys=['request_number', 'status'])
def check_in(request_id: int):
    _scoped_request(request_id)
    return vw.serialize_request(vw.check_in(get_db(), request_id))


@checkin_bp.post('/requests/<int:request_id>/check-out')
@require_permissions('vms.checkin.manage')
@audit_log('VMS.REQUEST.CHECK_OUT', entity='VisitorRequest', entity_id_key='id', meta_keys=['request_number', 'status'])
def check_out(request_id: int):
    _scoped_request(request_id)
    return vw.serialize_request(vw.check_out(get_db(), request_id))
