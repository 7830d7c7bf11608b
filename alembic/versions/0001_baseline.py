"""Baseline migration - repair orders, notification queue, jobs, integrations

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Repair orders
    # ==========================================================================
    op.execute('''
        CREATE TABLE repair_orders (
            id SERIAL PRIMARY KEY,
            ro_number INTEGER,
            sheet VARCHAR(50) NOT NULL DEFAULT 'Active',
            date_made VARCHAR(10),
            shop_name VARCHAR(255),
            part VARCHAR(255),
            serial VARCHAR(255),
            part_description TEXT,
            req_work TEXT,
            date_dropped_off VARCHAR(10),
            estimated_cost DOUBLE PRECISION,
            final_cost DOUBLE PRECISION,
            terms VARCHAR(100),
            shop_ref VARCHAR(100),
            estimated_delivery_date VARCHAR(10),
            current_status VARCHAR(100),
            current_status_date VARCHAR(10),
            internal_status VARCHAR(100),
            shop_status VARCHAR(100),
            tracking_number VARCHAR(255),
            notes TEXT,
            last_date_updated VARCHAR(10),
            next_date_to_update VARCHAR(10),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_repair_orders_ro_number ON repair_orders(ro_number)')
    op.execute('CREATE INDEX idx_repair_orders_status ON repair_orders(current_status)')

    op.execute('''
        CREATE TABLE shops (
            id SERIAL PRIMARY KEY,
            business_name VARCHAR(255) NOT NULL,
            email VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_shops_business_name ON shops(business_name)')

    # ==========================================================================
    # Notification queue
    # ==========================================================================
    op.execute('''
        CREATE TABLE notification_queue (
            id SERIAL PRIMARY KEY,
            repair_order_id INTEGER NOT NULL REFERENCES repair_orders(id) ON DELETE CASCADE,
            user_id VARCHAR(255) NOT NULL,
            type VARCHAR(30) NOT NULL,
            status VARCHAR(30) NOT NULL DEFAULT 'PENDING_APPROVAL',
            payload JSONB NOT NULL DEFAULT '{}',
            scheduled_for TIMESTAMPTZ NOT NULL DEFAULT now(),
            outlook_message_id VARCHAR(512),
            outlook_conversation_id VARCHAR(512),
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX idx_notification_queue_status ON notification_queue(status, scheduled_for)'
    )
    op.execute('''
        CREATE UNIQUE INDEX uq_notification_pending_per_ro
        ON notification_queue(repair_order_id)
        WHERE status = 'PENDING_APPROVAL'
    ''')

    # ==========================================================================
    # Jobs
    # ==========================================================================
    op.execute('''
        CREATE TABLE jobs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            job_type VARCHAR(50) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}',
            run_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            completed_at TIMESTAMPTZ,
            idempotency_key VARCHAR(255)
        )
    ''')
    op.execute('CREATE INDEX idx_jobs_pending ON jobs(status, run_at)')
    op.execute('''
        CREATE UNIQUE INDEX uq_job_idempotency ON jobs(idempotency_key)
        WHERE idempotency_key IS NOT NULL
    ''')

    # ==========================================================================
    # User integrations (encrypted Microsoft tokens)
    # ==========================================================================
    op.execute('''
        CREATE TABLE user_integrations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id VARCHAR(255) NOT NULL,
            integration_type VARCHAR(30) NOT NULL,
            access_token_encrypted TEXT,
            refresh_token_encrypted TEXT,
            token_expires_at TIMESTAMPTZ,
            account_email VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_user_integration_type UNIQUE (user_id, integration_type)
        )
    ''')


def downgrade() -> None:
    """Drop all tables."""
    op.execute('DROP TABLE IF EXISTS user_integrations')
    op.execute('DROP TABLE IF EXISTS jobs')
    op.execute('DROP TABLE IF EXISTS notification_queue')
    op.execute('DROP TABLE IF EXISTS shops')
    op.execute('DROP TABLE IF EXISTS repair_orders')
