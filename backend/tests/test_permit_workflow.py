"""Pure transition checks; no database or request context involved."""
from datetime import datetime, timedelta, timezone
import pytest

from permitdesk.errors import InvalidTransition, Unauthorized, ValidationError
from permitdesk.models.permit import Permit, PermitApproval
from permitdesk.services import permit_workflow as wf

END = datetime(2026, 1, 10, 17, 0, tzinfo=timezone.utc)
FIREMAN_PERMS = ['approvals.approve', 'permits.revoke', 'permits.close', 'permits.expire', 'permits.extend', 'permits.reapprove']


def _permit(status='PENDING', roles=('FIREMAN',), decisions=None):
    p = Permit(status=status, end_date=END)
    decisions = decisions or {}
    for i, role in enumerate(roles, start=1):
        p.approvals.append(PermitApproval(id=i, approver_role=role, decision=decisions.get(role, 'PENDING')))
    return p


def test_required_roles_by_work_type():
    assert wf.required_approver_roles('GENERAL') == ['FIREMAN']
    assert wf.required_approver_roles('HOT_WORK') == ['FIREMAN', 'SAFETY_OFFICER']
    catalog = {w['value']: w for w in wf.work_types_catalog()}
    assert len(catalog) == 15
    assert catalog['CONFINED_SPACE']['approvers'] == ['FIREMAN', 'SAFETY_OFFICER']


def test_single_approver_approve_completes():
    out = wf.transition(_permit(), 'approve', 'FIREMAN', FIREMAN_PERMS)
    assert out.new_status == 'APPROVED'
    assert out.decision == 'APPROVED'
    assert out.approval_id == 1


def test_first_of_two_approvals_stays_pending():
    out = wf.transition(_permit(roles=('FIREMAN', 'SAFETY_OFFICER')), 'approve', 'FIREMAN', FIREMAN_PERMS)
    assert out.new_status == 'PENDING'


def test_last_of_two_approvals_completes():
    p = _permit(roles=('FIREMAN', 'SAFETY_OFFICER'), decisions={'FIREMAN': 'APPROVED'})
    out = wf.transition(p, 'approve', 'SAFETY_OFFICER', ['approvals.approve'])
    assert out.new_status == 'APPROVED'


def test_reject_is_immediate_even_with_other_approvals():
    p = _permit(roles=('FIREMAN', 'SAFETY_OFFICER'), decisions={'FIREMAN': 'APPROVED'})
    out = wf.transition(p, 'reject', 'SAFETY_OFFICER', ['approvals.approve'])
    assert out.new_status == 'REJECTED'
    assert out.decision == 'REJECTED'


def test_role_without_assigned_approval_is_unauthorized():
    with pytest.raises(Unauthorized):
        wf.transition(_permit(), 'approve', 'SAFETY_OFFICER', ['approvals.approve'])


def test_already_decided_approval_is_invalid():
    p = _permit(roles=('FIREMAN', 'SAFETY_OFFICER'), decisions={'FIREMAN': 'APPROVED'})
    with pytest.raises(InvalidTransition):
        wf.transition(p, 'approve', 'FIREMAN', FIREMAN_PERMS)


def test_missing_permission_checked_before_status():
    with pytest.raises(Unauthorized) as exc:
        wf.transition(_permit(status='CLOSED'), 'revoke', 'FIREMAN', ['approvals.approve'])
    assert exc.value.extra['required'] == ['permits.revoke']


def test_wildcard_permission_passes_permission_check():
    out = wf.transition(_permit(status='APPROVED'), 'revoke', 'ADMIN', ['*'])
    assert out.new_status == 'REVOKED'


@pytest.mark.parametrize('action,status', [
    ('approve', 'APPROVED'), ('revoke', 'PENDING'), ('close', 'REJECTED'),
    ('expire', 'CLOSED'), ('reapprove', 'APPROVED'), ('extend', 'CLOSED'),
])
def test_invalid_source_status(action, status):
    with pytest.raises(InvalidTransition) as exc:
        wf.transition(_permit(status=status), action, 'FIREMAN', FIREMAN_PERMS)
    assert exc.value.extra['from'] == status


def test_reapprove_requires_fireman_role():
    with pytest.raises(Unauthorized):
        wf.transition(_permit(status='REJECTED'), 'reapprove', 'ADMIN', ['*'])
    out = wf.transition(_permit(status='REVOKED'), 'reapprove', 'FIREMAN', FIREMAN_PERMS)
    assert out.new_status == 'PENDING'


def test_extend_requires_later_end_date():
    with pytest.raises(ValidationError):
        wf.transition(_permit(status='APPROVED'), 'extend', 'FIREMAN', FIREMAN_PERMS, {'end_date': (END - timedelta(hours=1)).isoformat()})
    out = wf.transition(_permit(status='APPROVED'), 'extend', 'FIREMAN', FIREMAN_PERMS, {'end_date': (END + timedelta(days=1)).isoformat()})
    assert out.new_status == 'APPROVED'
    assert out.changes['end_date'] == END + timedelta(days=1)


def test_close_checklist_must_be_list():
    with pytest.raises(ValidationError):
        wf.transition(_permit(status='APPROVED'), 'close', 'FIREMAN', FIREMAN_PERMS, {'closure_checklist': 'done'})
    out = wf.transition(_permit(status='APPROVED'), 'close', 'FIREMAN', FIREMAN_PERMS, {'closure_checklist': ['area clean']})
    assert out.new_status == 'CLOSED'


def test_unknown_action():
    with pytest.raises(ValidationError):
        wf.transition(_permit(), 'teleport', 'FIREMAN', FIREMAN_PERMS)
