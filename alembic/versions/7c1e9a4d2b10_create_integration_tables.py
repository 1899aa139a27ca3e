"""create_integration_tables

Revision ID: 7c1e9a4d2b10
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c1e9a4d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('tenants',
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('tenant_id')
    )

    op.create_table('api_keys',
        sa.Column('key_id', sa.String(length=32), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=True),
        sa.Column('hash', sa.String(length=128), nullable=False),
        sa.Column('scopes', sa.JSON(), nullable=False),
        sa.Column('disabled', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.tenant_id']),
        sa.PrimaryKeyConstraint('key_id'),
        sa.UniqueConstraint('hash')
    )
    op.create_index('ix_api_keys_tenant_id', 'api_keys', ['tenant_id'])

    op.create_table('tenant_integrations',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('provider', sa.String(length=64), nullable=False),
        sa.Column('is_enabled', sa.Boolean(), nullable=False),
        sa.Column('base_url', sa.String(length=512), nullable=False),
        sa.Column('config', sa.JSON(), nullable=False),
        sa.Column('last_run', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_status', sa.String(length=16), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.tenant_id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'provider', name='uq_tenant_integrations_tenant_provider')
    )
    op.create_index('ix_tenant_integrations_tenant_id', 'tenant_integrations', ['tenant_id'])

    op.create_table('integration_jobs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('provider_slug', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('progress', sa.Integer(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('active_key', sa.String(length=160), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.tenant_id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('active_key')
    )
    op.create_index('ix_integration_jobs_key_status', 'integration_jobs', ['tenant_id', 'provider_slug', 'status'])
    op.create_index('ix_integration_jobs_created_at', 'integration_jobs', ['created_at'])

    op.create_table('dispatch_outbox',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('job_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['job_id'], ['integration_jobs.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_dispatch_outbox_job_id', 'dispatch_outbox', ['job_id'])
    op.create_index('ix_dispatch_outbox_status_next', 'dispatch_outbox', ['status', 'next_attempt_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_dispatch_outbox_status_next', 'dispatch_outbox')
    op.drop_index('ix_dispatch_outbox_job_id', 'dispatch_outbox')
    op.drop_table('dispatch_outbox')

    op.drop_index('ix_integration_jobs_created_at', 'integration_jobs')
    op.drop_index('ix_integration_jobs_key_status', 'integration_jobs')
    op.drop_table('integration_jobs')

    op.drop_index('ix_tenant_integrations_tenant_id', 'tenant_integrations')
    op.drop_table('tenant_integrations')

    op.drop_index('ix_api_keys_tenant_id', 'api_keys')
    op.drop_table('api_keys')

    op.drop_table('tenants')
