from __future__ import annotations
from typing import Any, Dict, Optional

from sqlalchemy import select, func

from permitdesk.models.permit import Permit, PermitApproval
from permitdesk.models.visitor import VisitorRequest, PreApproval
from permitdesk.services.visitor_workflow import visitor_status_filter, pre_approval_status_filter
from permitdesk.utils.timeutil import utcnow


def _grouped_counts(session, column, statuses, *criteria) -> Dict[str, int]:
    stmt = select(column, func.count()).where(*criteria).group_by(column)
    counts = {s: 0 for s in statuses}
    for status, n in session.execute(stmt):
        counts[status] = n
    return counts


def permit_summary(session, owner_id: Optional[int] = None) -> Dict[str, Any]:
    criteria = [Permit.created_by == owner_id] if owner_id is not None else []
    by_status = _grouped_counts(session, Permit.status, Permit.ALL_STATUSES, *criteria)
    by_work_type = dict(session.execute(
        select(Permit.work_type, func.count()).where(*criteria).group_by(Permit.work_type)
    ).all())
    pending_approvals = _grouped_counts(
        session, PermitApproval.approver_role, (), PermitApproval.decision == PermitApproval.DECISION_PENDING,
    )
    return {
        'total': sum(by_status.values()),
        'by_status': by_status,
        'by_work_type': by_work_type,
        'pending_approvals_by_role': pending_approvals,
    }


def vms_summary(session, company_id: Optional[int] = None) -> Dict[str, Any]:
    """Visitor counts by effective status; EXPIRED is split out of PENDING."""
    now = utcnow()
    scope = [VisitorRequest.company_id == company_id] if company_id is not None else []
    by_status = {}
    for status in VisitorRequest.ALL_STATUSES:
        by_status[status] = session.execute(
            select(func.count()).select_from(VisitorRequest).where(visitor_status_filter(status, now), *scope)
        ).scalar_one()
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    today = session.execute(
        select(func.count()).select_from(VisitorRequest).where(VisitorRequest.submitted_at >= day_start, *scope)
    ).scalar_one()
    pa_scope = [PreApproval.company_id == company_id] if company_id is not None else []
    active_pre = session.execute(
        select(func.count()).select_from(PreApproval).where(pre_approval_status_filter(PreApproval.STATUS_ACTIVE, now), *pa_scope)
    ).scalar_one()
    return {
        'total': sum(by_status.values()),
        'by_status': by_status,
        'on_site': by_status[VisitorRequest.STATUS_CHECKED_IN],
        'submitted_today': today,
        'active_pre_approvals': active_pre,
    }
