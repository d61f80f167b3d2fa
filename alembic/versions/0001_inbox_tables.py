"""Inbox Tables

Revision ID: 0001_inbox_tables
Revises:
Create Date: 2026-10-18

Creates the tables owned by the inbox ingestion service:
- inbox_tenant_credentials: credentials and webhook token per tenant
- inbox_contacts: counterparties keyed by phone number
- inbox_messages: normalized inbound messages keyed by provider message id
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = '0001_inbox_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # =========================================================================
    # TENANT CREDENTIALS
    # =========================================================================

    op.create_table(
        'inbox_tenant_credentials',
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('access_token_encrypted', sa.Text(), nullable=True),
        sa.Column('phone_number_id', sa.String(100), nullable=True),
        sa.Column('business_account_id', sa.String(100), nullable=True),
        sa.Column('phone_number', sa.String(32), nullable=True),
        sa.Column('webhook_token', sa.String(128), nullable=False),
        sa.Column('verify_token', sa.String(255), nullable=True),
        sa.Column('webhook_verified', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('api_version', sa.String(16), server_default='v23.0', nullable=False),
        sa.Column('access_token_added', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('tenant_id'),
        sa.UniqueConstraint('webhook_token', name='uq_inbox_credentials_webhook_token'),
    )
    op.create_index('idx_inbox_credentials_phone_number_id', 'inbox_tenant_credentials', ['phone_number_id'])

    # =========================================================================
    # CONTACTS
    # =========================================================================

    op.create_table(
        'inbox_contacts',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('whatsapp_name', sa.String(255), nullable=True),
        sa.Column('custom_name', sa.String(255), nullable=True),
        sa.Column('last_active', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # =========================================================================
    # MESSAGES
    # =========================================================================

    op.create_table(
        'inbox_messages',
        sa.Column('id', sa.String(255), nullable=False),
        sa.Column('sender_id', sa.String(64), nullable=False),
        sa.Column('receiver_id', sa.String(64), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_sent_by_me', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('is_read', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('message_type', sa.String(20), server_default='text', nullable=False),
        sa.Column('media_data', JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_inbox_messages_sender', 'inbox_messages', ['sender_id'])
    op.create_index('idx_inbox_messages_receiver', 'inbox_messages', ['receiver_id'])
    op.create_index('idx_inbox_messages_timestamp', 'inbox_messages', ['timestamp'])
    op.create_index('idx_inbox_messages_conversation', 'inbox_messages', ['sender_id', 'receiver_id', 'timestamp'])
    op.create_index('idx_inbox_messages_unread', 'inbox_messages', ['receiver_id', 'is_read'])


def downgrade():
    op.drop_index('idx_inbox_messages_unread', table_name='inbox_messages')
    op.drop_index('idx_inbox_messages_conversation', table_name='inbox_messages')
    op.drop_index('idx_inbox_messages_timestamp', table_name='inbox_messages')
    op.drop_index('idx_inbox_messages_receiver', table_name='inbox_messages')
    op.drop_index('idx_inbox_messages_sender', table_name='inbox_messages')
    op.drop_table('inbox_messages')

    op.drop_table('inbox_contacts')

    op.drop_index('idx_inbox_credentials_phone_number_id', table_name='inbox_tenant_credentials')
    op.drop_table('inbox_tenant_credentials')
