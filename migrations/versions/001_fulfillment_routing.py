"""fulfillment routing columns and tracking table

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Order-level routing state
    op.execute("""
        ALTER TABLE orders
        ADD COLUMN IF NOT EXISTS fulfillment_type TEXT,
        ADD COLUMN IF NOT EXISTS fulfillment_status TEXT DEFAULT 'pending',
        ADD COLUMN IF NOT EXISTS digital_delivery_status TEXT,
        ADD COLUMN IF NOT EXISTS download_expires_at TIMESTAMPTZ
    """)

    # Per-item download grants
    op.execute("""
        ALTER TABLE order_items
        ADD COLUMN IF NOT EXISTS is_digital BOOLEAN NOT NULL DEFAULT FALSE,
        ADD COLUMN IF NOT EXISTS download_url TEXT,
        ADD COLUMN IF NOT EXISTS download_url_generated_at TIMESTAMPTZ,
        ADD COLUMN IF NOT EXISTS download_expires_at TIMESTAMPTZ,
        ADD COLUMN IF NOT EXISTS digital_file_format TEXT,
        ADD COLUMN IF NOT EXISTS digital_file_size_bytes BIGINT,
        ADD COLUMN IF NOT EXISTS download_access_count INTEGER NOT NULL DEFAULT 0
    """)

    # Append-only audit log; order_id is stored as text to match whatever
    # key type the storefront uses for orders.id
    op.create_table(
        'order_fulfillment_tracking',
        sa.Column('id', sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column('order_id', sa.Text(), nullable=False),
        sa.Column('fulfillment_method', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('status_message', sa.Text(), nullable=True),
        sa.Column('tracking_data', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_fulfillment_tracking_order_method', 'order_fulfillment_tracking',
                    ['order_id', 'fulfillment_method'], unique=False)


def downgrade():
    op.drop_index('ix_fulfillment_tracking_order_method', table_name='order_fulfillment_tracking')
    op.drop_table('order_fulfillment_tracking')
    op.execute("""
        ALTER TABLE order_items
        DROP COLUMN IF EXISTS download_access_count,
        DROP COLUMN IF EXISTS digital_file_size_bytes,
        DROP COLUMN IF EXISTS digital_file_format,
        DROP COLUMN IF EXISTS download_expires_at,
        DROP COLUMN IF EXISTS download_url_generated_at,
        DROP COLUMN IF EXISTS download_url,
        DROP COLUMN IF EXISTS is_digital
    """)
    op.execute("""
        ALTER TABLE orders
        DROP COLUMN IF EXISTS download_expires_at,
        DROP COLUMN IF EXISTS digital_delivery_status,
        DROP COLUMN IF EXISTS fulfillment_status,
        DROP COLUMN IF EXISTS fulfillment_type
    """)
