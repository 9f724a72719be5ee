"""Visitor check-in requests (gatepasses) and pre-approvals.

Flow for a company that requires approval:

    submit -> PENDING --decide(APPROVE)--> APPROVED --check_in--> CHECKED_IN --check_out--> CHECKED_OUT
                      \\-decide(REJECT)--> REJECTED

A company with ``require_approval = False`` creates the request directly as
CHECKED_IN, pre-approved or not. At other companies a matching pre-approval
skips the decision and the request starts APPROVED. EXPIRED is never stored:
a PENDING request past ``expires_at`` (and an ACTIVE pre-approval past
``valid_until``) reads as EXPIRED and refuses any further transition.
"""
from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from urllib.parse import quote

from flask import current_app
from sqlalchemy import select, update, or_, and_

from permitdesk.errors import Conflict, InvalidTransition, NotFound, Unauthorized, ValidationError
from permitdesk.models.visitor import Company, VisitorRequest, PreApproval, BlacklistEntry
from permitdesk.utils.fsm import TransitionValidator
from permitdesk.utils.numbering import claim_number, next_number, qr_url, REQUEST_PREFIX, GUEST_PASS_PREFIX
from permitdesk.utils.timeutil import utcnow, as_utc, isoformat
from permitdesk.utils.validation import require_fields, parse_datetime

VISITOR_FSM = TransitionValidator({
    VisitorRequest.STATUS_PENDING: {VisitorRequest.STATUS_APPROVED, VisitorRequest.STATUS_REJECTED},
    VisitorRequest.STATUS_APPROVED: {VisitorRequest.STATUS_CHECKED_IN},
    VisitorRequest.STATUS_CHECKED_IN: {VisitorRequest.STATUS_CHECKED_OUT},
})

PRE_APPROVAL_FSM = TransitionValidator({
    PreApproval.STATUS_ACTIVE: {PreApproval.STATUS_USED, PreApproval.STATUS_CANCELLED},
})

DECISIONS = ('APPROVE', 'REJECT')
OPEN_STATUSES = (VisitorRequest.STATUS_PENDING, VisitorRequest.STATUS_APPROVED)


def effective_status(req: VisitorRequest, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    if req.status == VisitorRequest.STATUS_PENDING and req.expires_at is not None and now > as_utc(req.expires_at):
        return VisitorRequest.STATUS_EXPIRED
    return req.status


def effective_pre_approval_status(pa: PreApproval, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    if pa.status == PreApproval.STATUS_ACTIVE and now > as_utc(pa.valid_until):
        return PreApproval.STATUS_EXPIRED
    return pa.status


def visitor_status_filter(status: str, now: Optional[datetime] = None):
    """SQL criterion matching rows whose effective status equals status."""
    now = now or utcnow()
    if status == VisitorRequest.STATUS_EXPIRED:
        return and_(VisitorRequest.status == VisitorRequest.STATUS_PENDING, VisitorRequest.expires_at < now)
    if status == VisitorRequest.STATUS_PENDING:
        return and_(VisitorRequest.status == VisitorRequest.STATUS_PENDING,
                    or_(VisitorRequest.expires_at.is_(None), VisitorRequest.expires_at >= now))
    return VisitorRequest.status == status


def pre_approval_status_filter(status: str, now: Optional[datetime] = None):
    now = now or utcnow()
    if status == PreApproval.STATUS_EXPIRED:
        return and_(PreApproval.status == PreApproval.STATUS_ACTIVE, PreApproval.valid_until < now)
    if status == PreApproval.STATUS_ACTIVE:
        return and_(PreApproval.status == PreApproval.STATUS_ACTIVE, PreApproval.valid_until >= now)
    return PreApproval.status == status


# --- Companies -------------------------------------------------------------

def get_company_by_code(session, code: str, active_only: bool = True) -> Company:
    code = (code or '').strip().upper()
    company = session.execute(select(Company).where(Company.code == code)).scalar_one_or_none()
    if not company or (active_only and not company.is_active):
        raise NotFound('Company not found')
    return company


def request_ttl(company: Company) -> timedelta:
    hours = company.request_ttl_hours or current_app.config['VISITOR_REQUEST_TTL_HOURS']
    return timedelta(hours=hours)


def find_blacklist_hit(session, company_id: int, phone: Optional[str], id_proof_number: Optional[str]) -> Optional[BlacklistEntry]:
    identity = []
    if phone:
        identity.append(BlacklistEntry.phone == phone)
    if id_proof_number:
        identity.append(BlacklistEntry.id_proof_number == id_proof_number)
    if not identity:
        return None
    stmt = select(BlacklistEntry).where(
        BlacklistEntry.is_active.is_(True),
        or_(BlacklistEntry.company_id == company_id, BlacklistEntry.is_global.is_(True)),
        or_(*identity),
    ).limit(1)
    return session.execute(stmt).scalar_one_or_none()


def find_matching_pre_approval(session, company_id: int, phone: str, now: datetime) -> Optional[PreApproval]:
    stmt = select(PreApproval).where(
        PreApproval.company_id == company_id,
        PreApproval.phone == phone,
        PreApproval.status == PreApproval.STATUS_ACTIVE,
        PreApproval.valid_from <= now,
        PreApproval.valid_until >= now,
    ).order_by(PreApproval.valid_until.asc()).limit(1)
    return session.execute(stmt).scalar_one_or_none()


# --- Check-in requests -----------------------------------------------------

def _visitor_name(payload: Dict[str, Any]) -> Optional[str]:
    name = (payload.get('visitor_name') or '').strip()
    if name:
        return name
    parts = [str(payload.get(k) or '').strip() for k in ('first_name', 'last_name')]
    return ' '.join(p for p in parts if p) or None


def submit_check_in(session, company_code: Optional[str], payload: Dict[str, Any]) -> VisitorRequest:
    if not company_code:
        raise ValidationError('Missing required fields: company_code', extra={'fields': ['company_code']})
    company = get_company_by_code(session, company_code)
    data = dict(payload, visitor_name=_visitor_name(payload))
    require_fields(data, 'visitor_name', 'phone', 'purpose')
    phone = str(data['phone']).strip()
    now = utcnow()

    hit = find_blacklist_hit(session, company.id, phone, data.get('id_proof_number'))
    if hit:
        current_app.logger.warning('Blacklisted visitor blocked at company %s (entry %s)', company.code, hit.id)
        raise Unauthorized('Entry not permitted. Please contact security.', error_code='BLACKLISTED')

    existing = session.execute(select(VisitorRequest).where(
        VisitorRequest.company_id == company.id,
        VisitorRequest.phone == phone,
        VisitorRequest.status.in_(OPEN_STATUSES),
        VisitorRequest.expires_at > now,
    ).limit(1)).scalar_one_or_none()
    if existing:
        raise Conflict('You already have an open check-in request', extra={'request_number': existing.request_number})

    req = VisitorRequest(
        request_number=next_number(session, VisitorRequest.request_number, REQUEST_PREFIX, now),
        company_id=company.id,
        visitor_name=data['visitor_name'],
        phone=phone,
        email=data.get('email'),
        visitor_company=data.get('visitor_company'),
        purpose=str(data['purpose']).strip(),
        host_name=data.get('host_name'),
        id_proof_number=data.get('id_proof_number'),
        requires_approval=bool(company.require_approval),
        submitted_at=now,
        expires_at=now + request_ttl(company),
    )

    pre = find_matching_pre_approval(session, company.id, phone, now)
    if pre is not None:
        consumed = session.execute(
            update(PreApproval)
            .where(PreApproval.id == pre.id, PreApproval.status == PreApproval.STATUS_ACTIVE)
            .values(status=PreApproval.STATUS_USED, used_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        session.expire(pre)
        if consumed:
            req.pre_approval_id = pre.id
    if not company.require_approval:
        req.status = VisitorRequest.STATUS_CHECKED_IN
        req.check_in_time = now
    elif req.pre_approval_id is not None:
        req.status = VisitorRequest.STATUS_APPROVED
        req.processed_at = now
    else:
        req.status = VisitorRequest.STATUS_PENDING
    session.add(req)
    claim_number(session, req.request_number)
    session.commit()
    current_app.logger.info('Visitor request %s submitted for %s as %s', req.request_number, company.code, req.status)
    return req


def get_request(session, request_id: int) -> VisitorRequest:
    req = session.get(VisitorRequest, request_id)
    if not req:
        raise NotFound('Visitor request not found')
    return req


def get_request_by_number(session, request_number: str) -> VisitorRequest:
    req = session.execute(select(VisitorRequest).where(VisitorRequest.request_number == request_number)).scalar_one_or_none()
    if not req:
        raise NotFound('Request not found')
    return req


def _move(session, req: VisitorRequest, target: str, values: Dict[str, Any]) -> VisitorRequest:
    """Persist req -> target only if its stored status is still what we checked."""
    current = effective_status(req)
    VISITOR_FSM.assert_can_transition(current, target)
    criteria = [VisitorRequest.id == req.id, VisitorRequest.status == current]
    if current == VisitorRequest.STATUS_PENDING and req.expires_at is not None:
        criteria.append(VisitorRequest.expires_at >= utcnow())
    res = session.execute(
        update(VisitorRequest).where(*criteria).values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        session.rollback()
        raise InvalidTransition('Visitor request changed concurrently', extra={'from': current, 'to': target})
    session.commit()
    session.refresh(req)
    current_app.logger.info('Visitor request %s: %s -> %s', req.request_number, current, target)
    return req


def decide(session, request_id: int, decision: Any, actor_id: int, reason: Optional[str] = None) -> VisitorRequest:
    decision = str(decision or '').upper()
    if decision not in DECISIONS:
        raise ValidationError('decision must be APPROVE or REJECT', extra={'allowed': list(DECISIONS)})
    req = get_request(session, request_id)
    now = utcnow()
    if decision == 'APPROVE':
        return _move(session, req, VisitorRequest.STATUS_APPROVED, {'processed_at': now, 'processed_by': actor_id})
    if not reason or not str(reason).strip():
        raise ValidationError('reason required when rejecting')
    return _move(session, req, VisitorRequest.STATUS_REJECTED, {
        'processed_at': now, 'processed_by': actor_id, 'rejection_reason': str(reason).strip(),
    })


def check_in(session, request_id: int) -> VisitorRequest:
    req = get_request(session, request_id)
    return _move(session, req, VisitorRequest.STATUS_CHECKED_IN, {'check_in_time': utcnow()})


def check_out(session, request_id: int) -> VisitorRequest:
    req = get_request(session, request_id)
    return _move(session, req, VisitorRequest.STATUS_CHECKED_OUT, {'check_out_time': utcnow()})


def status_url(request_number: str) -> str:
    base = current_app.config['PUBLIC_BASE_URL'].rstrip('/')
    return f"{base}/vms/checkin/status/{quote(request_number)}"


def serialize_request(req: VisitorRequest, company: Optional[Company] = None) -> Dict[str, Any]:
    company = company or req.company
    return {
        'id': req.id,
        'request_number': req.request_number,
        'status': effective_status(req),
        'company_id': req.company_id,
        'company_name': (company.display_name or company.name) if company else None,
        'visitor_name': req.visitor_name,
        'phone': req.phone,
        'email': req.email,
        'visitor_company': req.visitor_company,
        'purpose': req.purpose,
        'host_name': req.host_name,
        'requires_approval': req.requires_approval,
        'pre_approval_id': req.pre_approval_id,
        'submitted_at': isoformat(req.submitted_at),
        'expires_at': isoformat(req.expires_at),
        'processed_at': isoformat(req.processed_at),
        'processed_by': req.processed_by,
        'rejection_reason': req.rejection_reason,
        'check_in_time': isoformat(req.check_in_time),
        'check_out_time': isoformat(req.check_out_time),
        'qr_url': qr_url(current_app.config['QR_SERVICE_URL'], status_url(req.request_number), current_app.config['QR_SIZE']),
    }


def serialize_public_status(req: VisitorRequest) -> Dict[str, Any]:
    """Subset safe for the unauthenticated polling endpoint."""
    full = serialize_request(req)
    keys = ('request_number', 'status', 'visitor_name', 'company_name', 'submitted_at', 'expires_at',
            'processed_at', 'check_in_time', 'check_out_time', 'rejection_reason', 'qr_url')
    return {k: full[k] for k in keys}


# --- Pre-approvals ---------------------------------------------------------

def create_pre_approval(session, company_id: int, data: Dict[str, Any], actor_id: int) -> PreApproval:
    require_fields(data, 'visitor_name', 'phone', 'valid_from', 'valid_until')
    valid_from = parse_datetime(data['valid_from'], 'valid_from')
    valid_until = parse_datetime(data['valid_until'], 'valid_until')
    if valid_until <= valid_from:
        raise ValidationError('valid_until must be after valid_from')
    if not session.get(Company, company_id):
        raise NotFound('Company not found')
    now = utcnow()
    pa = PreApproval(
        approval_code=next_number(session, PreApproval.approval_code, GUEST_PASS_PREFIX, now),
        company_id=company_id,
        status=PreApproval.STATUS_ACTIVE,
        visitor_name=str(data['visitor_name']).strip(),
        phone=str(data['phone']).strip(),
        purpose=data.get('purpose'),
        valid_from=valid_from,
        valid_until=valid_until,
        created_by=actor_id,
    )
    session.add(pa)
    claim_number(session, pa.approval_code)
    session.commit()
    current_app.logger.info('Pre-approval %s created for company %s', pa.approval_code, company_id)
    return pa


def get_pre_approval(session, pre_approval_id: int) -> PreApproval:
    pa = session.get(PreApproval, pre_approval_id)
    if not pa:
        raise NotFound('Pre-approval not found')
    return pa


def _move_pre_approval(session, pa: PreApproval, target: str, values: Dict[str, Any], require_window: bool) -> PreApproval:
    now = utcnow()
    current = effective_pre_approval_status(pa, now)
    PRE_APPROVAL_FSM.assert_can_transition(current, target)
    if require_window and now < as_utc(pa.valid_from):
        raise InvalidTransition('Pre-approval is not valid yet', extra={'valid_from': isoformat(pa.valid_from)})
    res = session.execute(
        update(PreApproval)
        .where(PreApproval.id == pa.id, PreApproval.status == PreApproval.STATUS_ACTIVE, PreApproval.valid_until >= now)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        session.rollback()
        raise InvalidTransition('Pre-approval changed concurrently', extra={'from': current, 'to': target})
    session.commit()
    session.refresh(pa)
    return pa


def use_pre_approval(session, pre_approval_id: int) -> PreApproval:
    pa = get_pre_approval(session, pre_approval_id)
    return _move_pre_approval(session, pa, PreApproval.STATUS_USED, {'used_at': utcnow()}, require_window=True)


def cancel_pre_approval(session, pre_approval_id: int) -> PreApproval:
    pa = get_pre_approval(session, pre_approval_id)
    return _move_pre_approval(session, pa, PreApproval.STATUS_CANCELLED, {}, require_window=False)


def serialize_pre_approval(pa: PreApproval) -> Dict[str, Any]:
    return {
        'id': pa.id,
        'approval_code': pa.approval_code,
        'company_id': pa.company_id,
        'status': effective_pre_approval_status(pa),
        'visitor_name': pa.visitor_name,
        'phone': pa.phone,
        'purpose': pa.purpose,
        'valid_from': isoformat(pa.valid_from),
        'valid_until': isoformat(pa.valid_until),
        'created_by': pa.created_by,
        'used_at': isoformat(pa.used_at),
    }
