"""initial_tenancy_schema

Revision ID: 3f1c9a2b7d10
Revises:
Create Date: 2026-03-02 10:21:44.118305

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a2b7d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _soft_delete_columns() -> list[sa.Column]:
    return [
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_by', sa.String(length=64), nullable=True),
    ]


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """
    Create the tenancy schema.

    Creates:
    - identities (claims store)
    - tenants
    - users (membership profiles)
    - invitations
    - audit_logs (append-only)
    - rate_limits
    """
    # 1. Claims store
    op.create_table(
        'identities',
        sa.Column('uid', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('custom_claims', sa.JSON(), nullable=True),
        sa.Column('disabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('tokens_valid_after', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('uid'),
    )
    op.create_index('ix_identities_email', 'identities', ['email'], unique=True)

    # 2. Tenants
    op.create_table(
        'tenants',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('owner_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=9), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tenants_owner_id', 'tenants', ['owner_id'])

    # 3. Membership profiles
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=7), nullable=False),
        sa.Column('resource_permissions', sa.JSON(), nullable=True),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        *_soft_delete_columns(),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_tenant_id', 'users', ['tenant_id'])
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_tenant_email', 'users', ['tenant_id', 'email'])
    op.create_index('ix_users_tenant_status', 'users', ['tenant_id', 'status'])

    # 4. Invitations
    op.create_table(
        'invitations',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('invited_by', sa.String(length=64), nullable=False),
        sa.Column('invited_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=8), nullable=False),
        sa.Column('invite_token', sa.String(length=64), nullable=False),
        sa.Column('invite_link', sa.String(length=1024), nullable=True),
        sa.Column('token_used', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('resource_permissions', sa.JSON(), nullable=True),
        *_soft_delete_columns(),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invite_token'),
    )
    op.create_index('ix_invitations_tenant_id', 'invitations', ['tenant_id'])
    op.create_index('ix_invitations_email', 'invitations', ['email'])
    op.create_index(
        'ix_invitations_tenant_email_status', 'invitations', ['tenant_id', 'email', 'status']
    )

    # 5. Audit trail
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=25), nullable=False),
        sa.Column('collection', sa.String(length=64), nullable=False),
        sa.Column('document_id', sa.String(length=64), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('changes', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_tenant_id', 'audit_logs', ['tenant_id'])
    op.create_index('ix_audit_logs_tenant_timestamp', 'audit_logs', ['tenant_id', 'timestamp'])

    # 6. Rate-limit counters
    op.create_table(
        'rate_limits',
        sa.Column('id', sa.String(length=400), nullable=False),
        sa.Column('key', sa.String(length=320), nullable=False),
        sa.Column('type', sa.String(length=6), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.Column('window_start', sa.DateTime(), nullable=True),
        sa.Column('blocked_until', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_rate_limits_expires_at', 'rate_limits', ['expires_at'])


def downgrade() -> None:
    """Drop the tenancy schema. WARNING: deletes all data."""
    op.drop_index('ix_rate_limits_expires_at', table_name='rate_limits')
    op.drop_table('rate_limits')

    op.drop_index('ix_audit_logs_tenant_timestamp', table_name='audit_logs')
    op.drop_index('ix_audit_logs_tenant_id', table_name='audit_logs')
    op.drop_table('audit_logs')

    op.drop_index('ix_invitations_tenant_email_status', table_name='invitations')
    op.drop_index('ix_invitations_email', table_name='invitations')
    op.drop_index('ix_invitations_tenant_id', table_name='invitations')
    op.drop_table('invitations')

    op.drop_index('ix_users_tenant_status', table_name='users')
    op.drop_index('ix_users_tenant_email', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_tenant_id', table_name='users')
    op.drop_table('users')

    op.drop_index('ix_tenants_owner_id', table_name='tenants')
    op.drop_table('tenants')

    op.drop_index('ix_identities_email', table_name='identities')
    op.drop_table('identities')
