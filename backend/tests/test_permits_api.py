from datetime import timedelta
from sqlalchemy import select
from permitdesk.models.audit import AuditLog
from permitdesk.models.permit import Permit, PermitApproval
from permitdesk.utils.numbering import parse_number
from permitdesk.utils.timeutil import utcnow
from tests.test_lifecycle_helpers import headers_for, assert_transition, create_resource_and_assert, permit_payload


def _actors(client, tag):
    return (
        headers_for(client, f'req_{tag}@example.com', 'REQUESTOR'),
        headers_for(client, f'fire_{tag}@example.com', 'FIREMAN'),
        headers_for(client, f'safety_{tag}@example.com', 'SAFETY_OFFICER'),
    )


def _decisions(session, permit_id):
    session.expire_all()
    rows = session.execute(select(PermitApproval).where(PermitApproval.permit_id == permit_id)).scalars()
    return {a.approver_role: a for a in rows}


def test_single_approver_permit_approved(client, session):
    requestor, fireman, _ = _actors(client, 's1')
    permit = create_resource_and_assert(client, '/permits', permit_payload(), requestor, expected_initial_status='PENDING')
    assert [a['approver_role'] for a in permit['approvals']] == ['FIREMAN']
    assert parse_number(permit['permit_number'])['prefix'] == 'RGDGTLWP'

    body = assert_transition(client, f"/permits/{permit['id']}/approve", fireman, 200, expected_body_value='APPROVED').get_json()
    assert body['approvals'][0]['decision'] == 'APPROVED'
    assert body['approvals'][0]['approver_name'] == 'fire_s1'

    decisions = _decisions(session, permit['id'])
    assert decisions['FIREMAN'].decision == 'APPROVED'
    assert session.get(Permit, permit['id']).status == 'APPROVED'


def test_fireman_reject_with_comment(client, session):
    requestor, fireman, _ = _actors(client, 's2')
    permit = create_resource_and_assert(client, '/permits', permit_payload(), requestor)
    body = assert_transition(client, f"/permits/{permit['id']}/reject", fireman, 200, json={'comment': 'unsafe'},
                             expected_body_value='REJECTED').get_json()
    assert body['approvals'][0]['comment'] == 'unsafe'
    assert _decisions(session, permit['id'])['FIREMAN'].comment == 'unsafe'


def test_high_risk_needs_both_roles(client, session):
    requestor, fireman, safety = _actors(client, 'hr')
    permit = create_resource_and_assert(client, '/permits', permit_payload('HOT_WORK'), requestor)
    pid = permit['id']
    assert {a['approver_role'] for a in permit['approvals']} == {'FIREMAN', 'SAFETY_OFFICER'}

    assert_transition(client, f'/permits/{pid}/approve', fireman, 200, expected_body_value='PENDING')
    # a second decision by the same role is refused
    assert_transition(client, f'/permits/{pid}/approve', fireman, 400)
    body = assert_transition(client, f'/permits/{pid}/approve', safety, 200, expected_body_value='APPROVED').get_json()
    assert all(a['decision'] == 'APPROVED' for a in body['approvals'])


def test_single_rejection_rejects_permit_despite_other_approval(client, session):
    requestor, fireman, safety = _actors(client, 'rj')
    pid = create_resource_and_assert(client, '/permits', permit_payload('CONFINED_SPACE'), requestor)['id']
    assert_transition(client, f'/permits/{pid}/approve', fireman, 200, expected_body_value='PENDING')
    assert_transition(client, f'/permits/{pid}/reject', safety, 200, json={'comment': 'no gas test'}, expected_body_value='REJECTED')
    decisions = _decisions(session, pid)
    assert decisions['FIREMAN'].decision == 'APPROVED'
    assert decisions['SAFETY_OFFICER'].decision == 'REJECTED'


def test_reapprove_resets_and_reaches_same_terminal_state(client, session):
    requestor, fireman, safety = _actors(client, 'ra')
    pid = create_resource_and_assert(client, '/permits', permit_payload('ELECTRICAL'), requestor)['id']
    assert_transition(client, f'/permits/{pid}/approve', fireman, 200)
    assert_transition(client, f'/permits/{pid}/reject', safety, 200, expected_body_value='REJECTED')

    body = assert_transition(client, f'/permits/{pid}/reapprove', fireman, 200, expected_body_value='PENDING').get_json()
    assert all(a['decision'] == 'PENDING' and a['approver_id'] is None for a in body['approvals'])

    assert_transition(client, f'/permits/{pid}/approve', fireman, 200, expected_body_value='PENDING')
    assert_transition(client, f'/permits/{pid}/approve', safety, 200, expected_body_value='APPROVED')
    assert {a.decision for a in _decisions(session, pid).values()} == {'APPROVED'}


def test_revoke_then_reapprove(client):
    requestor, fireman, _ = _actors(client, 'rv')
    pid = create_resource_and_assert(client, '/permits', permit_payload(), requestor)['id']
    assert_transition(client, f'/permits/{pid}/approve', fireman, 200)
    assert_transition(client, f'/permits/{pid}/revoke', fireman, 200, json={'reason': 'wind'}, expected_body_value='REVOKED')
    assert_transition(client, f'/permits/{pid}/reapprove', fireman, 200, expected_body_value='PENDING')


def test_extend_and_close(client):
    requestor, fireman, _ = _actors(client, 'ec')
    permit = create_resource_and_assert(client, '/permits', permit_payload(), requestor)
    pid = permit['id']
    assert_transition(client, f'/permits/{pid}/approve', fireman, 200)
    new_end = (utcnow() + timedelta(days=3)).replace(microsecond=0)
    body = assert_transition(client, f'/permits/{pid}/extend', fireman, 200, json={'end_date': new_end.isoformat()},
                             expected_body_value='APPROVED').get_json()
    assert body['end_date'].startswith(new_end.strftime('%Y-%m-%dT%H:%M:%S'))

    body = assert_transition(client, f'/permits/{pid}/close', fireman, 200, json={'closure_checklist': ['area clean', 'tools removed']},
                             expected_body_value='CLOSED').get_json()
    assert body['closure_checklist'] == ['area clean', 'tools removed']
    assert body['closed_at'] is not None
    # closed is terminal
    assert_transition(client, f'/permits/{pid}/expire', fireman, 400)


def test_expire_approved_permit(client):
    requestor, fireman, _ = _actors(client, 'ex')
    pid = create_resource_and_assert(client, '/permits', permit_payload(), requestor)['id']
    assert_transition(client, f'/permits/{pid}/expire', fireman, 400)
    assert_transition(client, f'/permits/{pid}/approve', fireman, 200)
    assert_transition(client, f'/permits/{pid}/expire', fireman, 200, expected_body_value='EXPIRED')


def test_safety_remarks_and_history(client):
    requestor, fireman, safety = _actors(client, 'rm')
    pid = create_resource_and_assert(client, '/permits', permit_payload(), requestor)['id']
    resp = client.post(f'/permits/{pid}/remarks', json={'safety_remarks': 'ok'}, headers=safety)
    assert resp.status_code == 400  # still pending
    assert_transition(client, f'/permits/{pid}/approve', fireman, 200)
    resp = client.post(f'/permits/{pid}/remarks', json={'safety_remarks': 'Barricade the area'}, headers=safety)
    assert resp.status_code == 200
    assert resp.get_json()['safety_remarks'] == 'Barricade the area'

    hist = client.get(f'/permits/{pid}/history', headers=requestor).get_json()['data']
    assert [h['action'] for h in hist] == ['CREATED', 'APPROVE', 'REMARKS']
    assert hist[1]['previous_status'] == 'PENDING' and hist[1]['new_status'] == 'APPROVED'
    assert hist[1]['performed_by_role'] == 'FIREMAN'


def test_transfer_to_another_requestor(client):
    requestor, _, _ = _actors(client, 'tr')
    other = headers_for(client, 'req_tr_other@example.com', 'REQUESTOR')
    pid = create_resource_and_assert(client, '/permits', permit_payload(), requestor)['id']
    other_id = client.get('/iam/auth/me', headers=other).get_json()['id']

    # the other requestor cannot move a permit they do not own
    assert client.post(f'/permits/{pid}/transfer', json={'new_owner_id': other_id}, headers=other).status_code == 403
    resp = client.post(f'/permits/{pid}/transfer', json={'new_owner_id': other_id, 'reason': 'shift change'}, headers=requestor)
    assert resp.status_code == 200
    assert resp.get_json()['created_by'] == other_id
    assert client.get(f'/permits/{pid}', headers=other).status_code == 200
    assert client.get(f'/permits/{pid}', headers=requestor).status_code == 403


def test_requestor_lists_only_own_permits(client):
    mine, _, _ = _actors(client, 'ls')
    theirs = headers_for(client, 'req_ls_other@example.com', 'REQUESTOR')
    create_resource_and_assert(client, '/permits', permit_payload(title='mine-ls'), mine)
    create_resource_and_assert(client, '/permits', permit_payload(title='theirs-ls'), theirs)
    titles = [p['title'] for p in client.get('/permits?limit=200', headers=mine).get_json()['data']]
    assert 'mine-ls' in titles and 'theirs-ls' not in titles


def test_approval_inbox_and_stats(client):
    requestor, fireman, safety = _actors(client, 'ib')
    pid = create_resource_and_assert(client, '/permits', permit_payload('WORKING_AT_HEIGHT', title='inbox-ib'), requestor)['id']
    inbox = client.get('/permits/approvals?limit=200', headers=safety).get_json()['data']
    assert pid in [p['id'] for p in inbox]
    stats = client.get('/permits/approvals/stats', headers=safety).get_json()
    assert stats['role'] == 'SAFETY_OFFICER'
    assert stats['counts']['PENDING'] >= 1
    assert stats['counts']['total'] == sum(stats['counts'][d] for d in ('PENDING', 'APPROVED', 'REJECTED'))

    assert_transition(client, f'/permits/{pid}/approve', safety, 200)
    inbox = client.get('/permits/approvals?limit=200', headers=safety).get_json()['data']
    assert pid not in [p['id'] for p in inbox]


def test_actions_are_audited(client, session):
    requestor, fireman, _ = _actors(client, 'au')
    pid = create_resource_and_assert(client, '/permits', permit_payload(), requestor)['id']
    assert_transition(client, f'/permits/{pid}/approve', fireman, 200)
    session.expire_all()
    log = session.execute(
        select(AuditLog).where(AuditLog.action == 'PERMIT.APPROVE', AuditLog.entity_id == str(pid))
    ).scalar_one()
    assert log.actor_role == 'FIREMAN'
    assert log.meta['changes']['status'] == {'before': 'PENDING', 'after': 'APPROVED'}


def test_approved_implies_all_approvals_approved(client, session):
    session.expire_all()
    for permit in session.execute(select(Permit).where(Permit.status == 'APPROVED')).scalars():
        assert all(a.decision == 'APPROVED' for a in permit.approvals), permit.permit_number
