"""Table-driven status transition checks.

Lifecycle entities (VisitorRequest, PreApproval) declare their allowed moves
as a plain graph:

    VISITOR_FSM = TransitionValidator({
        'PENDING': {'APPROVED', 'REJECTED'},
        'APPROVED': {'CHECKED_IN'},
        'CHECKED_IN': {'CHECKED_OUT'},
    })
    VISITOR_FSM.assert_can_transition(current_status, target_status)

Raises InvalidTransition (400, code INVALID_TRANSITION) if the move is not listed.
"""
from __future__ import annotations
from typing import Dict, Set

from permitdesk.errors import InvalidTransition


class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status'):
        self.graph = graph
        self.field_name = field_name

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            raise InvalidTransition(
                f"Invalid {self.field_name} transition {current} -> {target}",
                extra={'from': current, 'to': target},
            )
        return True

    def sources_for(self, target: str) -> Set[str]:
        """States from which target is reachable in one step."""
        return {src for src, dests in self.graph.items() if target in dests}

__all__ = ['TransitionValidator']
