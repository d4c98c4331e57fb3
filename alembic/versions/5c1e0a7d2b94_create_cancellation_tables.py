"""create cancellation tables

Revision ID: 5c1e0a7d2b94
Revises:
Create Date: 2026-10-18 09:12:41.204518

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c1e0a7d2b94'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

def upgrade() -> None:
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False, index=True),
        sa.Column('role', sa.String(), server_default='user', nullable=False),
        sa.Column('can_login', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'cancellationprovider',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('normalized_name', sa.String(), nullable=False, unique=True, index=True),
        sa.Column('type', sa.String(), server_default='manual', nullable=False),
        sa.Column('api_endpoint', sa.String(), nullable=True),
        sa.Column('requires_auth', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('login_url', sa.String(), nullable=True),
        sa.Column('logo', sa.String(), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('difficulty', sa.String(), nullable=True),
        sa.Column('average_time', sa.Integer(), nullable=True),
        sa.Column('success_rate', sa.Float(), nullable=True),
        sa.Column('supports_refunds', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('chat_url', sa.String(), nullable=True),
        sa.Column('instructions', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'subscription',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(), server_default='USD', nullable=False),
        sa.Column('frequency', sa.String(), server_default='monthly', nullable=False),
        sa.Column('status', sa.String(), server_default='active', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('cancellationprovider.id'), nullable=True),
        sa.Column('cancellation_info', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'cancellationrequest',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('subscription_id', sa.Integer(), nullable=False, index=True),
        sa.Column('provider_id', sa.Integer(), sa.ForeignKey('cancellationprovider.id'), nullable=True),
        sa.Column('status', sa.String(), server_default='pending', nullable=False, index=True),
        sa.Column('method', sa.String(), server_default='manual', nullable=False),
        sa.Column('priority', sa.String(), server_default='normal', nullable=False),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('max_attempts', sa.Integer(), server_default='3', nullable=False),
        sa.Column('last_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('next_retry_at', sa.DateTime(), nullable=True, index=True),
        sa.Column('confirmation_code', sa.String(), nullable=True),
        sa.Column('refund_amount', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('effective_date', sa.Date(), nullable=True),
        sa.Column('error_code', sa.String(), nullable=True),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('automation_log', sa.JSON(), nullable=True),
        sa.Column('manual_instructions', sa.JSON(), nullable=True),
        sa.Column('user_confirmed', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('user_notes', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('attempts <= max_attempts', name='ck_cancellationrequest_attempts'),
    )

    op.create_table(
        'cancellation_event',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('request_id', sa.Integer(), sa.ForeignKey('cancellationrequest.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('message', sa.String(), nullable=False),
        sa.Column('progress', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('request_id', 'sequence'),
    )

    op.create_table(
        'notification',
        sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
        sa.Column('recipient_role', sa.Enum('admin', name='recipientrole'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('trigger_source', sa.String(), nullable=False),
        sa.Column('related_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('content', sa.String(), nullable=False),
        sa.Column('channel', sa.Enum('system', name='notificationchannel'), nullable=False),
        sa.Column('status', sa.Enum('sent', name='notificationstatus'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

def downgrade() -> None:
    op.drop_table('notification')
    op.drop_table('cancellation_event')
    op.drop_table('cancellationrequest')
    op.drop_table('subscription')
    op.drop_table('cancellationprovider')
    op.drop_table('user')
    sa.Enum(name='notificationstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='notificationchannel').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='recipientrole').drop(op.get_bind(), checkfirst=True)
