import pytest
from permitdesk.models.visitor import Company
from permitdesk.services.companies import derive_code, seed_companies
from tests.test_lifecycle_helpers import headers_for
from tests.test_utils_seed import ensure_company


@pytest.mark.parametrize('name,code', [
    ('Adani Enterprises', 'ADANI-ENTERPRISES'),
    ('  Yes  Bank ', 'YES-BANK'),
    ('R&D Labs (Pune)', 'R-D-LABS-PUNE'),
    ('Maersk Global Service Centre International', 'MAERSK-GLOBAL-SERVICE-CENTRE-INT'),
])
def test_derive_code(name, code):
    assert derive_code(name) == code
    assert len(derive_code(name)) <= 32


def test_seed_companies_skips_existing_and_invalid(session):
    result = seed_companies(session, ['Seeded Tenant One', 'Seeded Tenant One', '!', 'Seeded Tenant Two'])
    session.commit()
    assert result == {'created': 2, 'skipped': 2}
    again = seed_companies(session, ['Seeded Tenant One'])
    session.commit()
    assert again == {'created': 0, 'skipped': 1}
    row = session.query(Company).filter_by(code='SEEDED-TENANT-TWO').one()
    assert row.is_active and row.require_approval


def test_company_crud_and_settings(client):
    admin = headers_for(client, 'vmsadmin_co@example.com', 'VMS_ADMIN')
    resp = client.post('/vms/companies', json={'code': 'co-new', 'name': 'New Co', 'request_ttl_hours': 6}, headers=admin)
    assert resp.status_code == 201, resp.get_json()
    company = resp.get_json()
    assert company['code'] == 'CO-NEW'
    assert company['require_approval'] is True and company['request_ttl_hours'] == 6
    assert client.post('/vms/companies', json={'code': 'CO-NEW', 'name': 'Again'}, headers=admin).status_code == 409
    assert client.post('/vms/companies', json={'code': 'x', 'name': 'Short'}, headers=admin).status_code == 400

    cid = company['id']
    settings = client.get(f'/vms/companies/{cid}/settings', headers=admin).get_json()
    assert settings == {'company_id': cid, 'require_approval': True, 'request_ttl_hours': 6}
    resp = client.put(f'/vms/companies/{cid}/settings', json={'require_approval': False}, headers=admin)
    assert resp.get_json()['require_approval'] is False
    assert client.put(f'/vms/companies/{cid}/settings', json={'name': 'Sneaky'}, headers=admin).status_code == 400
    assert client.put(f'/vms/companies/{cid}/settings', json={'request_ttl_hours': 0}, headers=admin).status_code == 400

    resp = client.put(f'/vms/companies/{cid}', json={'display_name': 'New Company Ltd'}, headers=admin)
    assert resp.get_json()['display_name'] == 'New Company Ltd'


def test_deactivating_company_drops_it_from_public_list(client):
    admin = headers_for(client, 'vmsadmin_deact@example.com', 'VMS_ADMIN')
    cid = client.post('/vms/companies', json={'code': 'CO-GONE', 'name': 'Gone Co'}, headers=admin).get_json()['id']
    codes = [c['code'] for c in client.get('/vms/checkin/companies').get_json()['data']]
    assert 'CO-GONE' in codes
    client.put(f'/vms/companies/{cid}', json={'is_active': False}, headers=admin)
    codes = [c['code'] for c in client.get('/vms/checkin/companies').get_json()['data']]
    assert 'CO-GONE' not in codes
    assert client.post('/vms/checkin/submit', json={'company_code': 'CO-GONE', 'visitor_name': 'A',
                                                    'phone': '1', 'purpose': 'x'}).status_code == 404


def test_scoped_admin_limits(client):
    own = ensure_company('CO-SCOPE')
    other = ensure_company('CO-SCOPE-OTHER')
    scoped = headers_for(client, 'vmsadmin_scoped@example.com', 'VMS_ADMIN', company_id=own.id)
    assert client.post('/vms/companies', json={'code': 'CO-X', 'name': 'X'}, headers=scoped).status_code == 400
    assert client.get(f'/vms/companies/{other.id}', headers=scoped).status_code == 403
    listed = client.get('/vms/companies?limit=200', headers=scoped).get_json()['data']
    assert [c['id'] for c in listed] == [own.id]
    resp = client.post('/vms/blacklist', json={'phone': '+971500000401', 'reason': 'x', 'is_global': True}, headers=scoped)
    assert resp.status_code == 400
    resp = client.post('/vms/blacklist', json={'phone': '+971500000401', 'reason': 'x'}, headers=scoped)
    assert resp.status_code == 201
    assert resp.get_json()['company_id'] == own.id


def test_blacklist_requires_identity(client):
    admin = headers_for(client, 'vmsadmin_bl@example.com', 'VMS_ADMIN')
    company = ensure_company('CO-BL')
    resp = client.post('/vms/blacklist', json={'reason': 'x', 'company_id': company.id}, headers=admin)
    assert resp.status_code == 400
    resp = client.post('/vms/blacklist', json={'phone': '+971500000402', 'reason': 'x'}, headers=admin)
    assert resp.status_code == 400
