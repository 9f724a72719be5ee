from __future__ import annotations
from flask import Blueprint, request
from permitdesk import get_db
from permitdesk.decorators.auth import require_permissions
from permitdesk.decorators.audit import audit_log
from permitdesk.errors import ValidationError
from permitdesk.models.visitor import Company, BlacklistEntry
from permitdesk.services import companies as svc
from permitdesk.services.policy import assert_company_access, filter_query_by_company, scoped_company_id, current_user_id
from permitdesk.utils.listing import make_cached_list_response, apply_pagination, latest_timestamp
from permitdesk.utils.sorting import apply_multi_sort

companies_bp = Blueprint('companies', __name__)


def _company_snapshot(kw):
    c = get_db().get(Company, kw.get('company_id'))
    return svc.serialize_company(c) if c else {}


@companies_bp.get('/companies')
@require_permissions('vms.companies.view')
def list_companies():
    session = get_db()
    q = filter_query_by_company(session.query(Company), Company.id)
    active = request.args.get('is_active')
    if active in ('true', 'false'):
        q = q.filter(Company.is_active.is_(active == 'true'))
    q = apply_multi_sort(q, request.args.get('sort'), {'name': Company.name, 'code': Company.code, 'id': Company.id}, Company.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return make_cached_list_response([svc.serialize_company(c) for c in rows], total, limit, offset, latest_timestamp(rows))


@companies_bp.post('/companies')
@require_permissions('vms.companies.manage')
@audit_log('COMPANY.CREATE', entity='Company', entity_id_key='id', meta_keys=['code', 'require_approval'])
def create_company():
    if scoped_company_id() is not None:
        raise ValidationError('company-scoped users cannot create companies')
    return svc.serialize_company(svc.create_company(get_db(), request.json or {})), 201


@companies_bp.get('/companies/<int:company_id>')
@require_permissions('vms.companies.view')
def get_company(company_id: int):
    assert_company_access(company_id)
    return svc.serialize_company(svc.get_company(get_db(), company_id))


@companies_bp.put('/companies/<int:company_id>')
@require_permissions('vms.companies.manage')
@audit_log('COMPANY.UPDATE', entity='Company', entity_id_key='id',
           diff_keys=['name', 'display_name', 'is_active', 'require_approval', 'request_ttl_hours'],
           pre_fetch=lambda a, kw: _company_snapshot(kw))
def update_company(company_id: int):
    assert_company_access(company_id)
    return svc.serialize_company(svc.update_company(get_db(), company_id, request.json or {}))


@companies_bp.get('/companies/<int:company_id>/settings')
@require_permissions('vms.companies.view')
def get_settings(company_id: int):
    assert_company_access(company_id)
    company = svc.get_company(get_db(), company_id)
    return {'company_id': company.id, 'require_approval': company.require_approval, 'request_ttl_hours': company.request_ttl_hours}


@companies_bp.put('/companies/<int:company_id>/settings')
@require_permissions('vms.companies.manage')
@audit_log('COMPANY.SETTINGS.UPDATE', entity='Company', entity_id_key='id',
           diff_keys=['require_approval', 'request_ttl_hours'], pre_fetch=lambda a, kw: _company_snapshot(kw))
def update_settings(company_id: int):
    assert_company_access(company_id)
    return svc.serialize_company(svc.update_settings(get_db(), company_id, request.json or {}))

# --- Blacklist ---

@companies_bp.get('/blacklist')
@require_permissions('vms.blacklist.view')
def list_blacklist():
    session = get_db()
    q = session.query(BlacklistEntry)
    scoped = scoped_company_id()
    if scoped is not None:
        q = q.filter((BlacklistEntry.company_id == scoped) | BlacklistEntry.is_global.is_(True))
    if request.args.get('include_inactive') != 'true':
        q = q.filter(BlacklistEntry.is_active.is_(True))
    phone = request.args.get('phone')
    if phone:
        q = q.filter(BlacklistEntry.phone == phone)
    q = q.order_by(BlacklistEntry.id.desc())
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return make_cached_list_response([svc.serialize_blacklist(e) for e in rows], total, limit, offset, latest_timestamp(rows))


@companies_bp.post('/blacklist')
@require_permissions('vms.blacklist.manage')
@audit_log('BLACKLIST.ADD', entity='BlacklistEntry', entity_id_key='id', meta_keys=['is_global', 'company_id', 'reason'])
def add_blacklist():
    data = request.json or {}
    scoped = scoped_company_id()
    if scoped is not None and data.get('is_global'):
        raise ValidationError('company-scoped users cannot add global entries')
    company_id = scoped if scoped is not None else data.get('company_id')
    entry = svc.add_blacklist_entry(get_db(), data, company_id, current_user_id())
    return svc.serialize_blacklist(entry), 201


@companies_bp.delete('/blacklist/<int:entry_id>')
@require_permissions('vms.blacklist.manage')
@audit_log('BLACKLIST.REMOVE', entity='BlacklistEntry', entity_id_key='id')
def remove_blacklist(entry_id: int):
    session = get_db()
    entry = session.get(BlacklistEntry, entry_id)
    if entry is not None and not entry.is_global:
        assert_company_access(entry.company_id)
    entry = svc.deactivate_blacklist_entry(session, entry_id)
    return svc.serialize_blacklist(entry)
