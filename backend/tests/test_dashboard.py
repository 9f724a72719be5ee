from tests.test_lifecycle_helpers import headers_for, create_resource_and_assert, permit_payload, visitor_payload
from tests.test_utils_seed import ensure_company


def test_requestor_dashboard_counts_own_permits(client):
    requestor = headers_for(client, 'req_dash@example.com', 'REQUESTOR')
    before = client.get('/dashboard/permits', headers=requestor).get_json()
    create_resource_and_assert(client, '/permits', permit_payload('HOT_WORK'), requestor)
    after = client.get('/dashboard/permits', headers=requestor).get_json()
    assert after['total'] == before['total'] + 1
    assert after['by_status']['PENDING'] == before['by_status']['PENDING'] + 1
    assert after['by_work_type']['HOT_WORK'] == before['by_work_type'].get('HOT_WORK', 0) + 1
    assert set(after['by_status']) == {'PENDING', 'APPROVED', 'REJECTED', 'REVOKED', 'CLOSED', 'EXPIRED'}
    assert after['pending_approvals_by_role']['SAFETY_OFFICER'] >= 1


def test_vms_dashboard_scoped_to_company(client):
    company = ensure_company('DASH-CO', require_approval=False)
    guard = headers_for(client, 'guard_dash@example.com', 'VMS_GUARD', company_id=company.id)
    create_resource_and_assert(client, '/vms/checkin/submit', visitor_payload('DASH-CO', '+971500000301'))
    create_resource_and_assert(client, '/vms/checkin/submit', visitor_payload('DASH-CO', '+971500000302'))
    body = client.get('/dashboard/vms', headers=guard).get_json()
    assert body['on_site'] == 2
    assert body['by_status']['CHECKED_IN'] == 2
    assert body['total'] == 2
    assert body['submitted_today'] == 2
    assert body['active_pre_approvals'] == 0


def test_dashboards_need_their_permission(client):
    guard = headers_for(client, 'guard_dash2@example.com', 'VMS_GUARD')
    engineer = headers_for(client, 'eng_dash@example.com', 'SITE_ENGINEER')
    assert client.get('/dashboard/permits', headers=guard).status_code == 403
    assert client.get('/dashboard/vms', headers=engineer).status_code == 403
