"""Writers that lose a race: stale reads and document-number collisions.

Each test loads a record into the shared session, changes the stored row
underneath it (as a second actor would) and then runs the service call with
the stale object still in the identity map.
"""
import pytest
from sqlalchemy import select, update
from permitdesk.errors import InvalidTransition
from permitdesk.models.permit import Permit, PermitApproval, PermitActionHistory
from permitdesk.models.visitor import VisitorRequest
from permitdesk.services import permit_workflow as wf
from permitdesk.services import visitor_workflow as vw
from tests.test_lifecycle_helpers import headers_for, assert_transition, create_resource_and_assert, permit_payload, visitor_payload
from tests.test_utils_seed import ensure_company, ensure_user


def _history(session, permit_id):
    session.expire_all()
    return list(session.execute(
        select(PermitActionHistory.action).where(PermitActionHistory.permit_id == permit_id).order_by(PermitActionHistory.id)
    ).scalars())


def _stale_permit(session, permit_id):
    permit = session.get(Permit, permit_id)
    assert permit.status
    assert list(permit.approvals)
    return permit


def test_approval_decided_underneath_is_refused(client, session):
    requestor = headers_for(client, 'req_race1@example.com', 'REQUESTOR')
    fireman = ensure_user('fire_race1@example.com', 'FIREMAN')
    permit = create_resource_and_assert(client, '/permits', permit_payload(), requestor)
    _stale_permit(session, permit['id'])

    session.execute(
        update(PermitApproval).where(PermitApproval.permit_id == permit['id'])
        .values(decision='APPROVED').execution_options(synchronize_session=False)
    )
    session.commit()

    actor = wf.Actor(user_id=fireman.id, role='FIREMAN', permissions=frozenset({'approvals.approve'}), name='fire_race1')
    with pytest.raises(InvalidTransition):
        wf.apply_action(session, permit['id'], 'approve', actor)

    assert _history(session, permit['id']) == ['CREATED']
    approval = session.execute(select(PermitApproval).where(PermitApproval.permit_id == permit['id'])).scalar_one()
    assert approval.approver_id is None


def test_status_changed_underneath_is_refused(client, session):
    requestor = headers_for(client, 'req_race2@example.com', 'REQUESTOR')
    fireman_headers = headers_for(client, 'fire_race2@example.com', 'FIREMAN')
    fireman = ensure_user('fire_race2@example.com', 'FIREMAN')
    permit = create_resource_and_assert(client, '/permits', permit_payload(), requestor)
    assert_transition(client, f"/permits/{permit['id']}/approve", fireman_headers, 200, expected_body_value='APPROVED')
    _stale_permit(session, permit['id'])

    session.execute(
        update(Permit).where(Permit.id == permit['id'])
        .values(status='REVOKED').execution_options(synchronize_session=False)
    )
    session.commit()

    actor = wf.Actor(user_id=fireman.id, role='FIREMAN', permissions=frozenset({'permits.close'}))
    with pytest.raises(InvalidTransition) as exc:
        wf.apply_action(session, permit['id'], 'close', actor, {'closure_checklist': ['area clean']})
    assert exc.value.extra['expected'] == 'APPROVED'

    assert _history(session, permit['id']) == ['CREATED', 'APPROVE']
    stored = session.get(Permit, permit['id'])
    assert stored.status == 'REVOKED'
    assert stored.closed_at is None
    assert stored.closure_checklist == []


def test_visitor_check_in_after_stored_status_changed(client, session):
    company = ensure_company('RACE-GATE')
    reception = headers_for(client, 'reception_race@example.com', 'VMS_RECEPTION', company_id=company.id)
    body = client.post('/vms/checkin/submit', json=visitor_payload('RACE-GATE', '+971500000301')).get_json()
    rid = next(r['id'] for r in client.get('/vms/checkin/requests?limit=200', headers=reception).get_json()['data']
               if r['request_number'] == body['request_number'])
    assert_transition(client, f'/vms/checkin/requests/{rid}/approve', reception, 200, expected_body_value='APPROVED')

    req = session.get(VisitorRequest, rid)
    assert req.status == 'APPROVED'
    session.execute(
        update(VisitorRequest).where(VisitorRequest.id == rid)
        .values(status='CHECKED_IN').execution_options(synchronize_session=False)
    )
    session.commit()

    with pytest.raises(InvalidTransition):
        vw.check_in(session, rid)

    session.expire_all()
    stored = session.get(VisitorRequest, rid)
    assert stored.status == 'CHECKED_IN'
    assert stored.check_in_time is None


def test_request_number_collision_is_a_conflict(client, monkeypatch):
    company = ensure_company('RACE-NUM')
    reception = headers_for(client, 'reception_racenum@example.com', 'VMS_RECEPTION', company_id=company.id)
    first = create_resource_and_assert(client, '/vms/checkin/submit', visitor_payload('RACE-NUM', '+971500000302'))
    pa = create_resource_and_assert(client, '/vms/preapprovals', {
        'visitor_name': 'Guest', 'phone': '+971500000303', 'purpose': 'Audit',
        'valid_from': '2000-01-01T00:00:00', 'valid_until': '2099-01-01T00:00:00',
    }, reception)

    monkeypatch.setattr(vw, 'next_number', lambda *args, **kwargs: first['request_number'])
    resp = client.post('/vms/checkin/submit', json=visitor_payload('RACE-NUM', '+971500000303'))
    assert resp.status_code == 409
    err = resp.get_json()['error']
    assert err['code'] == 'CONFLICT'
    assert err['number'] == first['request_number']
    # the pre-approval consumed before the failed insert is rolled back with it
    assert client.get(f"/vms/preapprovals/{pa['id']}", headers=reception).get_json()['status'] == 'ACTIVE'

    monkeypatch.undo()
    retry = create_resource_and_assert(client, '/vms/checkin/submit', visitor_payload('RACE-NUM', '+971500000303'),
                                       expected_initial_status='APPROVED')
    assert retry['request_number'] != first['request_number']


def test_permit_number_collision_is_a_conflict(client, session, monkeypatch):
    requestor = headers_for(client, 'req_racenum@example.com', 'REQUESTOR')
    first = create_resource_and_assert(client, '/permits', permit_payload(), requestor)

    monkeypatch.setattr(wf, 'next_number', lambda *args, **kwargs: first['permit_number'])
    resp = client.post('/permits', json=permit_payload(title='Colliding permit'), headers=requestor)
    assert resp.status_code == 409
    assert resp.get_json()['error']['number'] == first['permit_number']

    session.expire_all()
    assert session.execute(select(Permit).where(Permit.title == 'Colliding permit')).first() is None
