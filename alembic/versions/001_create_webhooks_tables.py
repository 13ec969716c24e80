"""create webhooks and webhook_logs tables

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:12:44.318205
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

webhook_log_status = sa.Enum(
    'PENDING', 'SUCCESS', 'FAILED', 'RETRYING',
    name='webhook_log_status_enum',
)


def upgrade() -> None:
    op.create_table(
        'webhooks',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('url', sa.String(), nullable=False),
        sa.Column('secret', sa.String(), nullable=False),
        sa.Column('events', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('failure_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_triggered_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_webhooks_is_active', 'webhooks', ['is_active'])
    op.create_index('ix_webhooks_created_at', 'webhooks', ['created_at'])

    op.create_table(
        'webhook_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'webhook_id',
            UUID(as_uuid=True),
            sa.ForeignKey('webhooks.id', ondelete='CASCADE'),
            nullable=True,
        ),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('status', webhook_log_status, nullable=False, server_default='PENDING'),
        sa.Column('status_code', sa.Integer(), nullable=True),
        sa.Column('response', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_webhook_logs_webhook_id', 'webhook_logs', ['webhook_id'])
    op.create_index('ix_webhook_logs_event_type', 'webhook_logs', ['event_type'])
    op.create_index('ix_webhook_logs_status', 'webhook_logs', ['status'])
    op.create_index('ix_webhook_logs_created_at', 'webhook_logs', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_webhook_logs_created_at', 'webhook_logs')
    op.drop_index('ix_webhook_logs_status', 'webhook_logs')
    op.drop_index('ix_webhook_logs_event_type', 'webhook_logs')
    op.drop_index('ix_webhook_logs_webhook_id', 'webhook_logs')
    op.drop_table('webhook_logs')
    op.drop_index('ix_webhooks_created_at', 'webhooks')
    op.drop_index('ix_webhooks_is_active', 'webhooks')
    op.drop_table('webhooks')
    webhook_log_status.drop(op.get_bind(), checkfirst=True)
