from datetime import timedelta
import pytest
from permitdesk.utils.timeutil import utcnow
from tests.test_lifecycle_helpers import headers_for, assert_transition, create_resource_and_assert, permit_payload


@pytest.mark.parametrize('overrides,field', [
    ({'title': ''}, 'title'),
    ({'work_type': 'BASKET_WEAVING'}, 'work_type'),
    ({'priority': 'URGENT'}, 'priority'),
    ({'start_date': 'yesterday'}, 'start_date'),
    ({'hazards': 'fire'}, 'hazards'),
])
def test_create_rejects_bad_payload(client, overrides, field):
    requestor = headers_for(client, 'req_neg@example.com', 'REQUESTOR')
    resp = client.post('/permits', json=permit_payload(**overrides), headers=requestor)
    assert resp.status_code == 400, field
    err = resp.get_json()['error']
    assert err['code'] == 'VALIDATION_ERROR'
    assert field in err['detail'] or field in err.get('fields', [])


def test_end_before_start(client):
    requestor = headers_for(client, 'req_neg@example.com', 'REQUESTOR')
    start = utcnow() + timedelta(days=1)
    resp = client.post('/permits', json=permit_payload(start_date=start.isoformat(), end_date=start.isoformat()), headers=requestor)
    assert resp.status_code == 400


def test_action_payload_checks(client):
    requestor = headers_for(client, 'req_neg2@example.com', 'REQUESTOR')
    fireman = headers_for(client, 'fire_neg@example.com', 'FIREMAN')
    permit = create_resource_and_assert(client, '/permits', permit_payload(), requestor)
    pid = permit['id']
    assert_transition(client, f'/permits/{pid}/approve', fireman, 200)
    # extend must move the end date later
    assert_transition(client, f'/permits/{pid}/extend', fireman, 400, json={'end_date': permit['start_date']})
    assert_transition(client, f'/permits/{pid}/extend', fireman, 400)
    assert_transition(client, f'/permits/{pid}/close', fireman, 400, json={'closure_checklist': 'done'})
    # nothing above changed the permit
    body = client.get(f'/permits/{pid}', headers=fireman).get_json()
    assert body['status'] == 'APPROVED' and body['end_date'] == permit['end_date']


def test_unknown_permit_and_owner(client):
    requestor = headers_for(client, 'req_neg3@example.com', 'REQUESTOR')
    fireman = headers_for(client, 'fire_neg3@example.com', 'FIREMAN')
    assert client.get('/permits/999999', headers=fireman).status_code == 404
    assert client.post('/permits/999999/approve', json={}, headers=fireman).status_code == 404
    pid = create_resource_and_assert(client, '/permits', permit_payload(), requestor)['id']
    assert client.post(f'/permits/{pid}/transfer', json={'new_owner_id': 999999}, headers=requestor).status_code == 404
    assert client.post(f'/permits/{pid}/transfer', json={'new_owner_id': 'bob'}, headers=requestor).status_code == 400


def test_remarks_need_text(client):
    requestor = headers_for(client, 'req_neg4@example.com', 'REQUESTOR')
    fireman = headers_for(client, 'fire_neg4@example.com', 'FIREMAN')
    safety = headers_for(client, 'safety_neg4@example.com', 'SAFETY_OFFICER')
    pid = create_resource_and_assert(client, '/permits', permit_payload(), requestor)['id']
    assert_transition(client, f'/permits/{pid}/approve', fireman, 200)
    assert client.post(f'/permits/{pid}/remarks', json={'safety_remarks': '   '}, headers=safety).status_code == 400
    assert client.post(f'/permits/{pid}/remarks', json={'safety_remarks': 'ok'}, headers=fireman).status_code == 403


def test_history_hidden_from_other_requestors(client):
    owner = headers_for(client, 'req_neg5@example.com', 'REQUESTOR')
    other = headers_for(client, 'req_neg6@example.com', 'REQUESTOR')
    pid = create_resource_and_assert(client, '/permits', permit_payload(), owner)['id']
    assert client.get(f'/permits/{pid}/history', headers=other).status_code == 403
    assert client.get(f'/permits/{pid}', headers=other).status_code == 403


def test_inbox_rejects_unknown_decision(client):
    fireman = headers_for(client, 'fire_neg7@example.com', 'FIREMAN')
    assert client.get('/permits/approvals?decision=MAYBE', headers=fireman).status_code == 400
    assert client.get('/permits/approvals?decision=APPROVED', headers=fireman).status_code == 200
