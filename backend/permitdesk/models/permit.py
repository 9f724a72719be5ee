from __future__ import annotations
from typing import Optional, List
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, ForeignKey, DateTime, JSON, UniqueConstraint, func

from .authz import Base


class Permit(Base):
    __tablename__ = 'permits'
    # Status constants
    STATUS_PENDING = 'PENDING'
    STATUS_APPROVED = 'APPROVED'
    STATUS_REJECTED = 'REJECTED'
    STATUS_REVOKED = 'REVOKED'
    STATUS_CLOSED = 'CLOSED'
    STATUS_EXPIRED = 'EXPIRED'
    ALL_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED, STATUS_REVOKED, STATUS_CLOSED, STATUS_EXPIRED)
    PRIORITIES = ('LOW', 'MEDIUM', 'HIGH', 'CRITICAL')

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    permit_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    location: Mapped[Optional[str]] = mapped_column(String(200))
    work_type: Mapped[str] = mapped_column(String(48), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default='MEDIUM')
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    created_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    start_date = mapped_column(DateTime(timezone=True), nullable=False)
    end_date = mapped_column(DateTime(timezone=True), nullable=False)
    hazards: Mapped[List[str]] = mapped_column(JSON, default=list)
    precautions: Mapped[List[str]] = mapped_column(JSON, default=list)
    safety_remarks: Mapped[Optional[str]] = mapped_column(Text)
    remarks_added_by: Mapped[Optional[str]] = mapped_column(String(128))
    remarks_added_at = mapped_column(DateTime(timezone=True), nullable=True)
    closure_checklist: Mapped[List[str]] = mapped_column(JSON, default=list)
    closed_at = mapped_column(DateTime(timezone=True), nullable=True)
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    approvals = relationship('PermitApproval', back_populates='permit', cascade='all, delete-orphan', order_by='PermitApproval.id')


class PermitApproval(Base):
    __tablename__ = 'permit_approvals'
    __table_args__ = (UniqueConstraint('permit_id', 'approver_role', name='uq_permit_approvals_permit_role'),)
    DECISION_PENDING = 'PENDING'
    DECISION_APPROVED = 'APPROVED'
    DECISION_REJECTED = 'REJECTED'
    ALL_DECISIONS = (DECISION_PENDING, DECISION_APPROVED, DECISION_REJECTED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    permit_id: Mapped[int] = mapped_column(ForeignKey('permits.id', ondelete='CASCADE'), nullable=False, index=True)
    approver_role: Mapped[str] = mapped_column(String(64), nullable=False)
    decision: Mapped[str] = mapped_column(String(16), nullable=False, default=DECISION_PENDING)
    comment: Mapped[Optional[str]] = mapped_column(Text)
    approver_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approver_name: Mapped[Optional[str]] = mapped_column(String(128))
    approved_at = mapped_column(DateTime(timezone=True), nullable=True)

    permit = relationship('Permit', back_populates='approvals')


class PermitActionHistory(Base):
    __tablename__ = 'permit_action_history'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    permit_id: Mapped[int] = mapped_column(ForeignKey('permits.id', ondelete='CASCADE'), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    performed_by: Mapped[int] = mapped_column(Integer, nullable=False)
    performed_by_role: Mapped[Optional[str]] = mapped_column(String(64))
    comment: Mapped[Optional[str]] = mapped_column(Text)
    previous_status: Mapped[Optional[str]] = mapped_column(String(32))
    new_status: Mapped[Optional[str]] = mapped_column(String(32))
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now())

# Status flow: PENDING -> APPROVED | REJECTED; APPROVED -> REVOKED | CLOSED | EXPIRED.
# REJECTED / REVOKED -> PENDING only through an explicit FIREMAN reapprove.
