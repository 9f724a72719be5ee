from __future__ import annotations
import re
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import select

from permitdesk.errors import Conflict, NotFound, ValidationError
from permitdesk.models.visitor import Company, BlacklistEntry
from permitdesk.utils.validation import require_fields, parse_bool
from permitdesk.utils.timeutil import isoformat

ACTIVE_COMPANIES_KEY = 'companies:active'
CODE_RE = re.compile(r'^[A-Z0-9][A-Z0-9_-]{1,31}$')
SETTINGS_FIELDS = ('require_approval', 'request_ttl_hours')


def company_cache():
    return current_app.extensions['company_cache']


def serialize_company(c: Company, public: bool = False) -> Dict[str, Any]:
    data = {
        'id': c.id,
        'code': c.code,
        'name': c.name,
        'display_name': c.display_name or c.name,
        'require_approval': c.require_approval,
    }
    if not public:
        data.update({
            'is_active': c.is_active,
            'request_ttl_hours': c.request_ttl_hours,
            'updated_at': isoformat(c.updated_at),
        })
    return data


def active_companies(session) -> List[Dict[str, Any]]:
    """Public company picker list, served from the TTL cache when warm."""
    cache = company_cache()
    cached = cache.get(ACTIVE_COMPANIES_KEY)
    if cached is not None:
        return cached
    rows = session.execute(select(Company).where(Company.is_active.is_(True)).order_by(Company.name.asc())).scalars()
    return cache.set(ACTIVE_COMPANIES_KEY, [serialize_company(c, public=True) for c in rows])


def get_company(session, company_id: int) -> Company:
    company = session.get(Company, company_id)
    if not company:
        raise NotFound('Company not found')
    return company


def _apply_settings(company: Company, data: Dict[str, Any]):
    if 'require_approval' in data:
        company.require_approval = parse_bool(data['require_approval'], 'require_approval')
    if 'request_ttl_hours' in data:
        ttl = data['request_ttl_hours']
        if ttl is not None and (not isinstance(ttl, int) or isinstance(ttl, bool) or ttl < 1):
            raise ValidationError('request_ttl_hours must be a positive integer or null')
        company.request_ttl_hours = ttl


def create_company(session, data: Dict[str, Any]) -> Company:
    require_fields(data, 'code', 'name')
    code = str(data['code']).strip().upper()
    if not CODE_RE.match(code):
        raise ValidationError('code must be 2-32 chars of A-Z, 0-9, _ or -')
    if session.execute(select(Company).where(Company.code == code)).scalar_one_or_none():
        raise Conflict('company code exists')
    company = Company(code=code, name=str(data['name']).strip(), display_name=data.get('display_name'),
                      is_active=True, require_approval=True)
    _apply_settings(company, data)
    session.add(company)
    session.commit()
    company_cache().invalidate(ACTIVE_COMPANIES_KEY)
    current_app.logger.info('Company %s created', code)
    return company


def update_company(session, company_id: int, data: Dict[str, Any]) -> Company:
    company = get_company(session, company_id)
    if 'name' in data:
        if not data['name']:
            raise ValidationError('name cannot be empty')
        company.name = data['name']
    if 'display_name' in data:
        company.display_name = data['display_name']
    if 'is_active' in data:
        company.is_active = parse_bool(data['is_active'], 'is_active')
    _apply_settings(company, data)
    session.commit()
    company_cache().invalidate(ACTIVE_COMPANIES_KEY)
    return company


def derive_code(name: str) -> str:
    """Company code from a display name: uppercase words joined by '-', capped at 32 chars."""
    words = re.findall(r'[A-Za-z0-9]+', name)
    return '-'.join(words).upper()[:32].rstrip('-')


def seed_companies(session, names: List[str]) -> Dict[str, int]:
    """Insert companies missing by code; existing rows are left untouched. Caller commits."""
    existing = set(session.execute(select(Company.code)).scalars())
    created = skipped = 0
    for name in names:
        code = derive_code(name)
        if not CODE_RE.match(code) or code in existing:
            skipped += 1
            continue
        session.add(Company(code=code, name=name.strip(), is_active=True, require_approval=True))
        existing.add(code)
        created += 1
    return {'created': created, 'skipped': skipped}


def update_settings(session, company_id: int, data: Dict[str, Any]) -> Company:
    unknown = sorted(set(data) - set(SETTINGS_FIELDS))
    if unknown:
        raise ValidationError(f'Unknown settings: {unknown}', extra={'allowed': list(SETTINGS_FIELDS)})
    return update_company(session, company_id, data)


# --- Blacklist -------------------------------------------------------------

def serialize_blacklist(e: BlacklistEntry) -> Dict[str, Any]:
    return {
        'id': e.id,
        'company_id': e.company_id,
        'is_global': e.is_global,
        'phone': e.phone,
        'id_proof_number': e.id_proof_number,
        'visitor_name': e.visitor_name,
        'reason': e.reason,
        'is_active': e.is_active,
        'created_by': e.created_by,
        'updated_at': isoformat(e.updated_at),
    }


def add_blacklist_entry(session, data: Dict[str, Any], company_id: Optional[int], actor_id: int) -> BlacklistEntry:
    require_fields(data, 'reason')
    if not data.get('phone') and not data.get('id_proof_number'):
        raise ValidationError('phone or id_proof_number required')
    is_global = bool(data.get('is_global'))
    if not is_global:
        if company_id is None:
            raise ValidationError('company_id required for a company blacklist entry')
        get_company(session, company_id)
    entry = BlacklistEntry(
        company_id=None if is_global else company_id,
        is_global=is_global,
        phone=data.get('phone'),
        id_proof_number=data.get('id_proof_number'),
        visitor_name=data.get('visitor_name'),
        reason=str(data['reason']).strip(),
        is_active=True,
        created_by=actor_id,
    )
    session.add(entry)
    session.commit()
    current_app.logger.info('Blacklist entry %s added (global=%s)', entry.id, is_global)
    return entry


def deactivate_blacklist_entry(session, entry_id: int) -> BlacklistEntry:
    entry = session.get(BlacklistEntry, entry_id)
    if not entry:
        raise NotFound('Blacklist entry not found')
    entry.is_active = False
    session.commit()
    return entry
