"""initial schema: users, jobs, ledger, queues, request logs

Revision ID: 3c6f0a1d2b7e
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c6f0a1d2b7e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
	return [
		sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
		sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
	]


def upgrade() -> None:
	"""Upgrade schema."""
	op.create_table(
		'users',
		sa.Column('id', sa.Integer(), nullable=False),
		sa.Column('email', sa.String(), nullable=False),
		sa.Column('name', sa.String(), nullable=False),
		sa.Column('credits', sa.Integer(), nullable=False, server_default=sa.text('0')),
		sa.Column('is_active', sa.Boolean(), nullable=True),
		*_timestamps(),
		sa.PrimaryKeyConstraint('id'),
	)
	op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
	op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
	op.create_index(op.f('ix_users_created_at'), 'users', ['created_at'], unique=False)

	op.create_table(
		'jobs',
		sa.Column('id', sa.String(length=32), nullable=False),
		sa.Column('user_id', sa.Integer(), nullable=False),
		sa.Column('status', sa.String(), nullable=False),
		sa.Column('progress', sa.SmallInteger(), nullable=False, server_default=sa.text('0')),
		sa.Column('pipeline_name', sa.String(), nullable=True),
		sa.Column('product_info', sa.JSON(), nullable=False),
		sa.Column('original_image', sa.JSON(), nullable=False),
		sa.Column('total_credits', sa.Integer(), nullable=False),
		sa.Column('credits_spent', sa.Integer(), nullable=False, server_default=sa.text('0')),
		sa.Column('credits_refunded', sa.Integer(), nullable=False, server_default=sa.text('0')),
		sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
		sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
		sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
		sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
		*_timestamps(),
		sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
		sa.PrimaryKeyConstraint('id'),
	)
	op.create_index(op.f('ix_jobs_user_id'), 'jobs', ['user_id'], unique=False)
	op.create_index(op.f('ix_jobs_status'), 'jobs', ['status'], unique=False)
	op.create_index(op.f('ix_jobs_created_at'), 'jobs', ['created_at'], unique=False)
	op.create_index('ix_jobs_user_created_at', 'jobs', ['user_id', 'created_at'], unique=False)
	op.create_index('ix_jobs_user_status', 'jobs', ['user_id', 'status'], unique=False)

	op.create_table(
		'job_items',
		sa.Column('id', sa.Integer(), nullable=False),
		sa.Column('job_id', sa.String(length=32), nullable=False),
		sa.Column('position', sa.Integer(), nullable=False),
		sa.Column('type', sa.String(), nullable=False),
		sa.Column('credits', sa.Integer(), nullable=False, server_default=sa.text('0')),
		sa.Column('config', sa.JSON(), nullable=False),
		sa.Column('status', sa.String(), nullable=False, server_default='pending'),
		sa.Column('result', sa.JSON(), nullable=True),
		sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
		sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
		*_timestamps(),
		sa.ForeignKeyConstraint(['job_id'], ['jobs.id'], ondelete='CASCADE'),
		sa.PrimaryKeyConstraint('id'),
		sa.UniqueConstraint('job_id', 'position', name='uq_job_items_position'),
	)
	op.create_index(op.f('ix_job_items_id'), 'job_items', ['id'], unique=False)
	op.create_index(op.f('ix_job_items_job_id'), 'job_items', ['job_id'], unique=False)
	op.create_index(op.f('ix_job_items_created_at'), 'job_items', ['created_at'], unique=False)

	op.create_table(
		'credit_transactions',
		sa.Column('id', sa.Integer(), nullable=False),
		sa.Column('user_id', sa.Integer(), nullable=False),
		sa.Column('type', sa.String(), nullable=False),
		sa.Column('amount', sa.Integer(), nullable=False),
		sa.Column('balance_before', sa.Integer(), nullable=False),
		sa.Column('balance_after', sa.Integer(), nullable=False),
		sa.Column('status', sa.String(), nullable=False, server_default='completed'),
		sa.Column('description', sa.Text(), nullable=False),
		sa.Column('payment_method', sa.String(), nullable=False, server_default='system'),
		sa.Column('job_id', sa.String(length=32), nullable=True),
		sa.Column('refund_reason', sa.Text(), nullable=True),
		sa.Column('order_id', sa.String(), nullable=True),
		sa.Column('payment_intent_id', sa.String(), nullable=True),
		sa.Column('admin_id', sa.String(), nullable=True),
		sa.Column('admin_note', sa.Text(), nullable=True),
		sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
		*_timestamps(),
		sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
		sa.PrimaryKeyConstraint('id'),
		sa.UniqueConstraint('job_id', 'type', name='uq_credit_transactions_job_type'),
	)
	op.create_index(op.f('ix_credit_transactions_id'), 'credit_transactions', ['id'], unique=False)
	op.create_index(op.f('ix_credit_transactions_user_id'), 'credit_transactions', ['user_id'], unique=False)
	op.create_index(op.f('ix_credit_transactions_type'), 'credit_transactions', ['type'], unique=False)
	op.create_index(op.f('ix_credit_transactions_status'), 'credit_transactions', ['status'], unique=False)
	op.create_index(op.f('ix_credit_transactions_job_id'), 'credit_transactions', ['job_id'], unique=False)
	op.create_index(op.f('ix_credit_transactions_created_at'), 'credit_transactions', ['created_at'], unique=False)
	op.create_index('ix_credit_transactions_user_created_at', 'credit_transactions', ['user_id', 'created_at'], unique=False)
	op.create_index('ix_credit_transactions_user_type', 'credit_transactions', ['user_id', 'type'], unique=False)

	op.create_table(
		'queue_entries',
		sa.Column('id', sa.Integer(), nullable=False),
		sa.Column('queue_name', sa.String(length=64), nullable=False),
		sa.Column('payload', sa.JSON(), nullable=False),
		sa.Column('status', sa.String(length=16), nullable=False, server_default='waiting'),
		sa.Column('attempts', sa.Integer(), nullable=False, server_default=sa.text('0')),
		sa.Column('max_attempts', sa.Integer(), nullable=False),
		sa.Column('backoff_delay_ms', sa.Integer(), nullable=False),
		sa.Column('remove_on_complete_seconds', sa.Integer(), nullable=False),
		sa.Column('remove_on_fail_seconds', sa.Integer(), nullable=False),
		sa.Column('available_at', sa.DateTime(timezone=True), nullable=False),
		sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True),
		sa.Column('last_error', sa.Text(), nullable=True),
		sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
		sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
		sa.PrimaryKeyConstraint('id'),
	)
	op.create_index(op.f('ix_queue_entries_id'), 'queue_entries', ['id'], unique=False)
	op.create_index('ix_queue_entries_claim', 'queue_entries', ['queue_name', 'status', 'available_at'], unique=False)
	op.create_index('ix_queue_entries_finished', 'queue_entries', ['queue_name', 'status', 'finished_at'], unique=False)

	op.create_table(
		'queue_states',
		sa.Column('queue_name', sa.String(length=64), nullable=False),
		sa.Column('paused', sa.Boolean(), nullable=False, server_default=sa.false()),
		sa.PrimaryKeyConstraint('queue_name'),
	)

	op.create_table(
		'request_logs',
		sa.Column('id', sa.Integer(), nullable=False),
		sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
		sa.Column('correlation_id', sa.String(length=64), nullable=False),
		sa.Column('direction', sa.String(length=16), nullable=False),
		sa.Column('connection_type', sa.String(length=16), nullable=True),
		sa.Column('method', sa.String(length=16), nullable=True),
		sa.Column('path_template', sa.String(length=512), nullable=True),
		sa.Column('raw_path', sa.String(length=512), nullable=True),
		sa.Column('route_name', sa.String(length=128), nullable=True),
		sa.Column('status_code', sa.Integer(), nullable=True),
		sa.Column('duration_ms', sa.Integer(), nullable=False),
		sa.Column('client_ip', sa.String(length=64), nullable=True),
		sa.Column('user_agent', sa.String(length=256), nullable=True),
		sa.Column('auth_type', sa.String(length=16), nullable=True),
		sa.Column('user_id', sa.Integer(), nullable=True),
		sa.Column('provider', sa.String(length=64), nullable=True),
		sa.Column('target', sa.String(length=256), nullable=True),
		sa.Column('operation', sa.String(length=64), nullable=True),
		sa.Column('error_code', sa.String(length=64), nullable=True),
		sa.PrimaryKeyConstraint('id'),
	)
	op.create_index(op.f('ix_request_logs_id'), 'request_logs', ['id'], unique=False)
	op.create_index(op.f('ix_request_logs_created_at'), 'request_logs', ['created_at'], unique=False)
	op.create_index(op.f('ix_request_logs_correlation_id'), 'request_logs', ['correlation_id'], unique=False)
	op.create_index(op.f('ix_request_logs_path_template'), 'request_logs', ['path_template'], unique=False)
	op.create_index(op.f('ix_request_logs_status_code'), 'request_logs', ['status_code'], unique=False)
	op.create_index(op.f('ix_request_logs_user_id'), 'request_logs', ['user_id'], unique=False)
	op.create_index(op.f('ix_request_logs_provider'), 'request_logs', ['provider'], unique=False)
	op.create_index(op.f('ix_request_logs_target'), 'request_logs', ['target'], unique=False)
	op.create_index('ix_request_logs_direction_created_at', 'request_logs', ['direction', 'created_at'], unique=False)


def downgrade() -> None:
	"""Downgrade schema."""
	op.drop_table('request_logs')
	op.drop_table('queue_states')
	op.drop_table('queue_entries')
	op.drop_table('credit_transactions')
	op.drop_table('job_items')
	op.drop_table('jobs')
	op.drop_table('users')
