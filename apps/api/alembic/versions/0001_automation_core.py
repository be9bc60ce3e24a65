"""Automation core - outbox, conversations, booking, audit and policy tables.

Revision ID: 0001_automation_core
Revises:
Create Date: 2026-10-19

Creates:
- jobs (outbox with partial due index and unique idempotency key)
- contacts
- conversation_threads, conversation_participants, conversation_messages
- appointment_holds, appointments
- audit_logs
- policy_settings
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_automation_core'
down_revision = None
branch_labels = None
depends_on = None


def _uuid():
    return postgresql.UUID(as_uuid=True)


def _ts():
    return sa.DateTime(timezone=True)


def upgrade() -> None:
    # ==========================================================================
    # jobs
    # ==========================================================================
    op.create_table(
        'jobs',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column('attempts', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('next_attempt_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('locked_until', _ts(), nullable=True),
        sa.Column('locked_by', sa.String(100), nullable=True),
        sa.Column('created_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed_at', _ts(), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'idx_jobs_due', 'jobs', ['next_attempt_at'],
        postgresql_where=sa.text('processed_at IS NULL'),
    )
    op.create_index('idx_jobs_type_created', 'jobs', ['job_type', 'created_at'])
    op.create_index(
        'uq_job_idempotency', 'jobs', ['idempotency_key'], unique=True,
        postgresql_where=sa.text('idempotency_key IS NOT NULL'),
    )

    # ==========================================================================
    # contacts
    # ==========================================================================
    op.create_table(
        'contacts',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('phone_e164', sa.String(20), nullable=True),
        sa.Column('postal_code', sa.String(10), nullable=True),
        sa.Column('pipeline_stage', sa.String(20), server_default=sa.text("'new'"), nullable=False),
        sa.Column('salesperson_member_id', _uuid(), nullable=True),
        sa.Column('salesperson_assigned_at', _ts(), nullable=True),
        sa.Column('created_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_contacts_phone_e164', 'contacts', ['phone_e164'])
    op.create_index('idx_contacts_email', 'contacts', ['email'])

    # ==========================================================================
    # conversation_threads
    # ==========================================================================
    op.create_table(
        'conversation_threads',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('contact_id', _uuid(), nullable=True),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'open'"), nullable=False),
        sa.Column('state', sa.String(40), server_default=sa.text("'new'"), nullable=False),
        sa.Column('subject', sa.String(255), nullable=True),
        sa.Column('last_message_at', _ts(), nullable=True),
        sa.Column('last_message_preview', sa.String(140), nullable=True),
        sa.Column('created_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_threads_contact', 'conversation_threads', ['contact_id', 'last_message_at'])
    op.create_index('idx_threads_channel_last', 'conversation_threads', ['channel', 'last_message_at'])

    # ==========================================================================
    # conversation_participants
    # ==========================================================================
    op.create_table(
        'conversation_participants',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('thread_id', _uuid(), nullable=False),
        sa.Column('participant_type', sa.String(20), nullable=False),
        sa.Column('contact_id', _uuid(), nullable=True),
        sa.Column('team_member_id', _uuid(), nullable=True),
        sa.Column('display_name', sa.String(120), nullable=True),
        sa.Column('external_address', sa.String(255), nullable=True),
        sa.Column('created_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['thread_id'], ['conversation_threads.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_participants_thread', 'conversation_participants', ['thread_id'])

    # ==========================================================================
    # conversation_messages
    # ==========================================================================
    op.create_table(
        'conversation_messages',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('thread_id', _uuid(), nullable=False),
        sa.Column('participant_id', _uuid(), nullable=True),
        sa.Column('direction', sa.String(10), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('subject', sa.String(255), nullable=True),
        sa.Column('body', sa.Text(), server_default=sa.text("''"), nullable=False),
        sa.Column('to_address', sa.String(255), nullable=True),
        sa.Column('from_address', sa.String(255), nullable=True),
        sa.Column('delivery_status', sa.String(20), nullable=True),
        sa.Column('provider', sa.String(30), nullable=True),
        sa.Column('provider_message_id', sa.String(255), nullable=True),
        sa.Column('failure_detail', sa.Text(), nullable=True),
        sa.Column('sent_at', _ts(), nullable=True),
        sa.Column('is_draft', sa.Boolean(), server_default=sa.text('FALSE'), nullable=False),
        sa.Column('autopilot', sa.Boolean(), server_default=sa.text('FALSE'), nullable=False),
        sa.Column('autopilot_for_message_id', _uuid(), nullable=True),
        sa.Column('autopilot_no_autosend', sa.Boolean(), server_default=sa.text('FALSE'), nullable=False),
        sa.Column('autopilot_derived_from_draft_id', _uuid(), nullable=True),
        sa.Column('ai_model', sa.String(100), nullable=True),
        sa.Column('missing_info', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('alternatives', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('extracted_phone_e164', sa.String(20), nullable=True),
        sa.Column('dm_page_id', sa.String(100), nullable=True),
        sa.Column('created_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['thread_id'], ['conversation_threads.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['participant_id'], ['conversation_participants.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_messages_thread_created', 'conversation_messages', ['thread_id', 'created_at'])
    op.create_index('idx_messages_autopilot_for', 'conversation_messages', ['autopilot_for_message_id'])

    # ==========================================================================
    # appointment_holds (before appointments: FK from appointments.hold_id)
    # ==========================================================================
    op.create_table(
        'appointment_holds',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('contact_id', _uuid(), nullable=True),
        sa.Column('start_at', _ts(), nullable=False),
        sa.Column('end_at', _ts(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'active'"), nullable=False),
        sa.Column('expires_at', _ts(), nullable=False),
        sa.Column('created_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'idx_holds_active_window', 'appointment_holds', ['start_at', 'end_at'],
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index('idx_holds_contact', 'appointment_holds', ['contact_id', 'status'])

    # ==========================================================================
    # appointments
    # ==========================================================================
    op.create_table(
        'appointments',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('contact_id', _uuid(), nullable=True),
        sa.Column('hold_id', _uuid(), nullable=True),
        sa.Column('start_at', _ts(), nullable=False),
        sa.Column('end_at', _ts(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'confirmed'"), nullable=False),
        sa.Column('completed_at', _ts(), nullable=True),
        sa.Column('created_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['hold_id'], ['appointment_holds.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_appointments_window', 'appointments', ['start_at', 'end_at'])
    op.create_index('idx_appointments_contact', 'appointments', ['contact_id', 'status'])

    # ==========================================================================
    # audit_logs
    # ==========================================================================
    op.create_table(
        'audit_logs',
        sa.Column('id', _uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('action', sa.String(60), nullable=False),
        sa.Column('actor_type', sa.String(20), nullable=False),
        sa.Column('actor_label', sa.String(120), nullable=True),
        sa.Column('entity_type', sa.String(40), nullable=True),
        sa.Column('entity_id', _uuid(), nullable=True),
        sa.Column('contact_id', _uuid(), nullable=True),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_audit_action_created', 'audit_logs', ['action', 'created_at'])
    op.create_index('idx_audit_contact_created', 'audit_logs', ['contact_id', 'created_at'])
    op.create_index('idx_audit_entity', 'audit_logs', ['entity_type', 'entity_id'])

    # ==========================================================================
    # policy_settings
    # ==========================================================================
    op.create_table(
        'policy_settings',
        sa.Column('key', sa.String(60), nullable=False),
        sa.Column('value', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('updated_at', _ts(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )


def downgrade() -> None:
    op.drop_table('policy_settings')
    op.drop_index('idx_audit_entity', table_name='audit_logs')
    op.drop_index('idx_audit_contact_created', table_name='audit_logs')
    op.drop_index('idx_audit_action_created', table_name='audit_logs')
    op.drop_table('audit_logs')
    op.drop_index('idx_appointments_contact', table_name='appointments')
    op.drop_index('idx_appointments_window', table_name='appointments')
    op.drop_table('appointments')
    op.drop_index('idx_holds_contact', table_name='appointment_holds')
    op.drop_index('idx_holds_active_window', table_name='appointment_holds')
    op.drop_table('appointment_holds')
    op.drop_index('idx_messages_autopilot_for', table_name='conversation_messages')
    op.drop_index('idx_messages_thread_created', table_name='conversation_messages')
    op.drop_table('conversation_messages')
    op.drop_index('idx_participants_thread', table_name='conversation_participants')
    op.drop_table('conversation_participants')
    op.drop_index('idx_threads_channel_last', table_name='conversation_threads')
    op.drop_index('idx_threads_contact', table_name='conversation_threads')
    op.drop_table('conversation_threads')
    op.drop_index('idx_contacts_email', table_name='contacts')
    op.drop_index('idx_contacts_phone_e164', table_name='contacts')
    op.drop_table('contacts')
    op.drop_index('uq_job_idempotency', table_name='jobs')
    op.drop_index('idx_jobs_type_created', table_name='jobs')
    op.drop_index('idx_jobs_due', table_name='jobs')
    op.drop_table('jobs')
