"""initial schema: authz, audit, permits, visitor management, meters

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True)


def upgrade():
    op.create_table('permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key', sa.String(length=64), nullable=False, unique=True),
        sa.Column('module', sa.String(length=32), nullable=False),
        sa.Column('action', sa.String(length=48), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        _timestamps(),
    )
    op.create_index('ix_permissions_key', 'permissions', ['key'])
    op.create_index('ix_permissions_module', 'permissions', ['module'])

    op.create_table('roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=64), nullable=False, unique=True),
        sa.Column('display_name', sa.String(length=128), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('permissions', sa.JSON(), nullable=True),
        _timestamps(),
    )

    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False, unique=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('company_id', sa.Integer(), nullable=True),
        _timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_role_id', 'users', ['role_id'])
    op.create_index('ix_users_company_id', 'users', ['company_id'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=False),
        sa.Column('actor_role', sa.String(length=64), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])

    op.create_table('permits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('permit_number', sa.String(length=64), nullable=False, unique=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('location', sa.String(length=200), nullable=True),
        sa.Column('work_type', sa.String(length=48), nullable=False),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='MEDIUM'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='PENDING'),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('hazards', sa.JSON(), nullable=True),
        sa.Column('precautions', sa.JSON(), nullable=True),
        sa.Column('safety_remarks', sa.Text(), nullable=True),
        sa.Column('remarks_added_by', sa.String(length=128), nullable=True),
        sa.Column('remarks_added_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closure_checklist', sa.JSON(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        _timestamps(),
    )
    op.create_index('ix_permits_permit_number', 'permits', ['permit_number'])
    op.create_index('ix_permits_work_type', 'permits', ['work_type'])
    op.create_index('ix_permits_status', 'permits', ['status'])
    op.create_index('ix_permits_created_by', 'permits', ['created_by'])

    op.create_table('permit_approvals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('permit_id', sa.Integer(), sa.ForeignKey('permits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('approver_role', sa.String(length=64), nullable=False),
        sa.Column('decision', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('approver_id', sa.Integer(), nullable=True),
        sa.Column('approver_name', sa.String(length=128), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('permit_id', 'approver_role', name='uq_permit_approvals_permit_role'),
    )
    op.create_index('ix_permit_approvals_permit_id', 'permit_approvals', ['permit_id'])

    op.create_table('permit_action_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('permit_id', sa.Integer(), sa.ForeignKey('permits.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('performed_by', sa.Integer(), nullable=False),
        sa.Column('performed_by_role', sa.String(length=64), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('previous_status', sa.String(length=32), nullable=True),
        sa.Column('new_status', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_permit_action_history_permit_id', 'permit_action_history', ['permit_id'])

    op.create_table('companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=32), nullable=False, unique=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('display_name', sa.String(length=128), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('require_approval', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('request_ttl_hours', sa.Integer(), nullable=True),
        _timestamps(),
    )
    op.create_index('ix_companies_code', 'companies', ['code'])

    op.create_table('pre_approvals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('approval_code', sa.String(length=64), nullable=False, unique=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('visitor_name', sa.String(length=160), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=False),
        sa.Column('purpose', sa.String(length=200), nullable=True),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),
        _timestamps(),
    )
    op.create_index('ix_pre_approvals_company_id', 'pre_approvals', ['company_id'])
    op.create_index('ix_pre_approvals_status', 'pre_approvals', ['status'])
    op.create_index('ix_pre_approvals_phone', 'pre_approvals', ['phone'])

    op.create_table('visitor_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_number', sa.String(length=64), nullable=False, unique=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='PENDING'),
        sa.Column('visitor_name', sa.String(length=160), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=True),
        sa.Column('visitor_company', sa.String(length=128), nullable=True),
        sa.Column('purpose', sa.String(length=200), nullable=False),
        sa.Column('host_name', sa.String(length=128), nullable=True),
        sa.Column('id_proof_number', sa.String(length=64), nullable=True),
        sa.Column('requires_approval', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('pre_approval_id', sa.Integer(), sa.ForeignKey('pre_approvals.id'), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_by', sa.Integer(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('check_in_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('check_out_time', sa.DateTime(timezone=True), nullable=True),
        _timestamps(),
    )
    op.create_index('ix_visitor_requests_request_number', 'visitor_requests', ['request_number'])
    op.create_index('ix_visitor_requests_company_id', 'visitor_requests', ['company_id'])
    op.create_index('ix_visitor_requests_status', 'visitor_requests', ['status'])
    op.create_index('ix_visitor_requests_phone', 'visitor_requests', ['phone'])

    op.create_table('blacklist_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('is_global', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('id_proof_number', sa.String(length=64), nullable=True),
        sa.Column('visitor_name', sa.String(length=160), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('created_by', sa.Integer(), nullable=False),
        _timestamps(),
    )
    op.create_index('ix_blacklist_entries_company_id', 'blacklist_entries', ['company_id'])
    op.create_index('ix_blacklist_entries_phone', 'blacklist_entries', ['phone'])

    op.create_table('meter_readings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('meter_type', sa.String(length=32), nullable=False),
        sa.Column('meter_name', sa.String(length=128), nullable=False),
        sa.Column('meter_serial', sa.String(length=64), nullable=True),
        sa.Column('location', sa.String(length=200), nullable=True),
        sa.Column('reading_value', sa.Numeric(14, 2), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=True),
        sa.Column('previous_reading', sa.Numeric(14, 2), nullable=True),
        sa.Column('consumption', sa.Numeric(14, 2), nullable=True),
        sa.Column('reading_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('site_engineer_id', sa.Integer(), nullable=False),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('verified_by', sa.Integer(), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        _timestamps(),
    )
    op.create_index('ix_meter_readings_meter_type', 'meter_readings', ['meter_type'])
    op.create_index('ix_meter_readings_meter_serial', 'meter_readings', ['meter_serial'])
    op.create_index('ix_meter_readings_reading_date', 'meter_readings', ['reading_date'])
    op.create_index('ix_meter_readings_site_engineer_id', 'meter_readings', ['site_engineer_id'])


def downgrade():
    for table in (
        'meter_readings', 'blacklist_entries', 'visitor_requests', 'pre_approvals', 'companies',
        'permit_action_history', 'permit_approvals', 'permits', 'audit_logs', 'users', 'roles', 'permissions',
    ):
        op.drop_table(table)
