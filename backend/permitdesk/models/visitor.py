from __future__ import annotations
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Boolean, ForeignKey, DateTime, Text, func

from .authz import Base


class Company(Base):
    __tablename__ = 'companies'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(128))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    require_approval: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Overrides VISITOR_REQUEST_TTL_HOURS when set
    request_ttl_hours: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    updated_at = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class VisitorRequest(Base):
    __tablename__ = 'visitor_requests'
    STATUS_PENDING = 'PENDING'
    STATUS_APPROVED = 'APPROVED'
    STATUS_CHECKED_IN = 'CHECKED_IN'
    STATUS_CHECKED_OUT = 'CHECKED_OUT'
    STATUS_REJECTED = 'REJECTED'
    # Never persisted; derived for PENDING rows past expires_at
    STATUS_EXPIRED = 'EXPIRED'
    ALL_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_CHECKED_IN, STATUS_CHECKED_OUT, STATUS_REJECTED, STATUS_EXPIRED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    company_id: Mapped[int] = mapped_column(ForeignKey('companies.id'), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    visitor_name: Mapped[str] = mapped_column(String(160), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(128))
    visitor_company: Mapped[Optional[str]] = mapped_column(String(128))
    purpose: Mapped[str] = mapped_column(String(200), nullable=False)
    host_name: Mapped[Optional[str]] = mapped_column(String(128))
    id_proof_number: Mapped[Optional[str]] = mapped_column(String(64))
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    pre_approval_id: Mapped[Optional[int]] = mapped_column(ForeignKey('pre_approvals.id'), nullable=True)
    expires_at = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    check_in_time = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_time = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    company = relationship('Company')


class PreApproval(Base):
    __tablename__ = 'pre_approvals'
    STATUS_ACTIVE = 'ACTIVE'
    STATUS_USED = 'USED'
    STATUS_EXPIRED = 'EXPIRED'
    STATUS_CANCELLED = 'CANCELLED'
    ALL_STATUSES = (STATUS_ACTIVE, STATUS_USED, STATUS_EXPIRED, STATUS_CANCELLED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    approval_code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    company_id: Mapped[int] = mapped_column(ForeignKey('companies.id'), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_ACTIVE, index=True)
    visitor_name: Mapped[str] = mapped_column(String(160), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    purpose: Mapped[Optional[str]] = mapped_column(String(200))
    valid_from = mapped_column(DateTime(timezone=True), nullable=False)
    valid_until = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    used_at = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class BlacklistEntry(Base):
    __tablename__ = 'blacklist_entries'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[Optional[int]] = mapped_column(ForeignKey('companies.id'), nullable=True, index=True)
    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), index=True)
    id_proof_number: Mapped[Optional[str]] = mapped_column(String(64))
    visitor_name: Mapped[Optional[str]] = mapped_column(String(160))
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
