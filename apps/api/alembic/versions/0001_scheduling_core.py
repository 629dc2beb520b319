"""Initial migration - organizations, contacts, calendar settings, appointments

Revision ID: 0001_scheduling_core
Revises:
Create Date: 2026-10-19

All timestamps are TIMESTAMPTZ and written in UTC.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_scheduling_core'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create scheduling tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Organizations
    # ==========================================================================
    op.execute('''
        CREATE TABLE organizations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            timezone VARCHAR(64) NOT NULL DEFAULT 'America/New_York',
            business_hours JSON,
            settings JSON NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Contacts
    # ==========================================================================
    op.execute('''
        CREATE TABLE contacts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            first_name VARCHAR(100),
            last_name VARCHAR(100),
            email VARCHAR(255),
            phone_number VARCHAR(32),
            notification_preference VARCHAR(10),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_contacts_org ON contacts(organization_id)')

    # ==========================================================================
    # Calendar settings (one row per organization)
    # ==========================================================================
    op.execute('''
        CREATE TABLE calendar_settings (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID UNIQUE NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            send_reminder BOOLEAN NOT NULL DEFAULT true,
            reminder_hours_before INTEGER NOT NULL DEFAULT 24,
            sms_reminders_enabled BOOLEAN NOT NULL DEFAULT true,
            phone_reminders_enabled BOOLEAN NOT NULL DEFAULT false,
            buffer_after_minutes INTEGER NOT NULL DEFAULT 15,
            min_notice_hours INTEGER NOT NULL DEFAULT 2,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_reminder_hours_positive CHECK (reminder_hours_before > 0)
        )
    ''')

    # ==========================================================================
    # Appointments
    # ==========================================================================
    op.execute('''
        CREATE TABLE appointments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            contact_id UUID,
            agent_id UUID,
            call_id UUID,
            title VARCHAR(255) NOT NULL,
            description TEXT,
            scheduled_at TIMESTAMPTZ NOT NULL,
            end_at TIMESTAMPTZ NOT NULL,
            duration INTEGER NOT NULL DEFAULT 30,
            time_zone VARCHAR(64) NOT NULL DEFAULT 'America/New_York',
            meeting_type VARCHAR(20) NOT NULL DEFAULT 'phone',
            meeting_link VARCHAR(500),
            location VARCHAR(500),
            phone_number VARCHAR(32),
            attendee_name VARCHAR(255),
            attendee_email VARCHAR(255),
            attendee_phone VARCHAR(32),
            notification_preference VARCHAR(10),
            status VARCHAR(20) NOT NULL DEFAULT 'scheduled',
            confirmed_at TIMESTAMPTZ,
            cancelled_at TIMESTAMPTZ,
            cancel_reason TEXT,
            notes TEXT,
            reminder_sent_at TIMESTAMPTZ,
            sms_reminder_sent_at TIMESTAMPTZ,
            reminder_call_sent_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_appointment_duration_positive CHECK (duration > 0)
        )
    ''')
    op.execute('CREATE INDEX idx_appointments_org_time ON appointments(organization_id, scheduled_at)')
    op.execute('CREATE INDEX idx_appointments_status_time ON appointments(status, scheduled_at)')


def downgrade() -> None:
    """Drop scheduling tables."""
    op.execute('DROP TABLE IF EXISTS appointments')
    op.execute('DROP TABLE IF EXISTS calendar_settings')
    op.execute('DROP TABLE IF EXISTS contacts')
    op.execute('DROP TABLE IF EXISTS organizations')
