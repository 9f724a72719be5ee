from permitdesk.errors import InvalidTransition
from permitdesk.utils.fsm import TransitionValidator
from permitdesk.services.visitor_workflow import VISITOR_FSM, PRE_APPROVAL_FSM
import pytest


def test_transition_validator_allows_valid():
    fsm = TransitionValidator({'A': {'B'}, 'B': set()})
    assert fsm.assert_can_transition('A', 'B') is True


def test_transition_validator_blocks_invalid():
    fsm = TransitionValidator({'A': {'B'}, 'B': set()})
    with pytest.raises(InvalidTransition) as exc:
        fsm.assert_can_transition('A', 'C')
    assert exc.value.code == 400
    assert exc.value.extra == {'from': 'A', 'to': 'C'}


def test_sources_for():
    assert VISITOR_FSM.sources_for('CHECKED_OUT') == {'CHECKED_IN'}
    assert VISITOR_FSM.sources_for('APPROVED') == {'PENDING'}


def test_check_out_only_after_check_in():
    for status in ('PENDING', 'APPROVED', 'REJECTED', 'EXPIRED', 'CHECKED_OUT'):
        assert not VISITOR_FSM.can_transition(status, 'CHECKED_OUT')
    assert VISITOR_FSM.can_transition('CHECKED_IN', 'CHECKED_OUT')


def test_expired_is_terminal():
    assert not any(VISITOR_FSM.can_transition('EXPIRED', t) for t in ('APPROVED', 'REJECTED', 'CHECKED_IN'))
    assert not PRE_APPROVAL_FSM.can_transition('EXPIRED', 'USED')


def test_transitions_documented_in_openapi(client):
    body = client.get('/openapi.json').get_json()
    schema = body['components']['schemas']['VisitorRequest']
    assert 'x-transitions' in schema
    assert 'CHECKED_IN' in schema['x-transitions']
