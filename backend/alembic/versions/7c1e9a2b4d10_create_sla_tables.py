"""create sla tables

Revision ID: 7c1e9a2b4d10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '7c1e9a2b4d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'ticket_priorities',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('sla_hours', sa.Float(), nullable=True),
        sa.Column('level', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_ticket_priorities_organization_id', 'ticket_priorities', ['organization_id'])

    op.create_table(
        'tickets',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='open'),
        sa.Column(
            'status_class',
            sa.Enum('open', 'active', 'pending', 'resolved', 'closed', name='statusclass'),
            nullable=False,
            server_default='open',
        ),
        sa.Column('priority_id', sa.Uuid(), sa.ForeignKey('ticket_priorities.id'), nullable=True),
        sa.Column('assignee_id', sa.Uuid(), nullable=True),
        sa.Column('first_response_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_tickets_organization_id', 'tickets', ['organization_id'])
    op.create_index('ix_tickets_status_class', 'tickets', ['status_class'])

    op.create_table(
        'sla_policies',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column(
            'ticket_priority_id',
            sa.Uuid(),
            sa.ForeignKey('ticket_priorities.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('first_response_hours', sa.Float(), nullable=False),
        sa.Column('next_response_hours', sa.Float(), nullable=True),
        sa.Column('resolution_hours', sa.Float(), nullable=False),
        sa.Column('business_hours_only', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint('organization_id', 'ticket_priority_id', name='uq_sla_policies_org_priority'),
    )

    op.create_table(
        'sla_instances',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False, unique=True
        ),
        sa.Column('policy_id', sa.Uuid(), sa.ForeignKey('sla_policies.id', ondelete='SET NULL'), nullable=True),
        sa.Column('first_response_hours', sa.Float(), nullable=False),
        sa.Column('next_response_hours', sa.Float(), nullable=True),
        sa.Column('resolution_hours', sa.Float(), nullable=False),
        sa.Column('business_hours_only', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('first_response_due_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('next_response_due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_due_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('first_response_met', sa.Boolean(), nullable=True),
        sa.Column('next_response_met', sa.Boolean(), nullable=True),
        sa.Column('resolution_met', sa.Boolean(), nullable=True),
        sa.Column(
            'sla_status',
            sa.Enum('active', 'first_response_breached', 'resolution_breached', name='slastatus'),
            nullable=False,
            server_default='active',
        ),
        sa.Column('total_paused_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('escalation_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_escalated_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_sla_instances_resolution_due_at', 'sla_instances', ['resolution_due_at'])
    op.create_index('ix_sla_instances_first_response_due_at', 'sla_instances', ['first_response_due_at'])
    op.create_index('ix_sla_instances_sla_status', 'sla_instances', ['sla_status'])

    op.create_table(
        'sla_pause_periods',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'sla_instance_id',
            sa.Uuid(),
            sa.ForeignKey('sla_instances.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        'uq_sla_pause_periods_open',
        'sla_pause_periods',
        ['sla_instance_id'],
        unique=True,
        postgresql_where=sa.text('ended_at IS NULL'),
    )

    op.create_table(
        'business_hours',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(), nullable=False, server_default='Default'),
        sa.Column('timezone', sa.String(), nullable=False, server_default='UTC'),
        sa.Column('weekly_schedule', sa.JSON(), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_business_hours_organization_id', 'business_hours', ['organization_id'])

    op.create_table(
        'holidays',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'business_hours_id',
            sa.Uuid(),
            sa.ForeignKey('business_hours.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('recurring', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table('holidays')
    op.drop_index('ix_business_hours_organization_id', table_name='business_hours')
    op.drop_table('business_hours')
    op.drop_index('uq_sla_pause_periods_open', table_name='sla_pause_periods')
    op.drop_table('sla_pause_periods')
    op.drop_table('sla_instances')
    op.drop_table('sla_policies')
    op.drop_table('tickets')
    op.drop_table('ticket_priorities')
    sa.Enum(name='slastatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='statusclass').drop(op.get_bind(), checkfirst=True)
