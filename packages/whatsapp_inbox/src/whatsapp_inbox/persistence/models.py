"""
Inbox Database Models

Tables:
- inbox_tenant_credentials: per-tenant WhatsApp credentials and webhook routing
- inbox_contacts: lightweight counterparty records (phone -> display name)
- inbox_messages: normalized messages keyed by provider message id
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from whatsapp_inbox.contracts.payloads import MessageType
from whatsapp_inbox.providers.meta_cloud.client import DEFAULT_API_VERSION

InboxBase = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TenantCredentials(InboxBase):
    """
    WhatsApp credentials of one business account.

    ``webhook_token`` is random, unique and the only way an inbound request is
    mapped to a tenant. It is generated independently of every other field and
    only changes through an explicit rotation.
    """

    __tablename__ = "inbox_tenant_credentials"

    tenant_id = Column(String(64), primary_key=True)
    access_token_encrypted = Column(Text, nullable=True)  # Fernet token when a key is configured
    phone_number_id = Column(String(100), nullable=True)  # Routing id from Meta
    business_account_id = Column(String(100), nullable=True)
    phone_number = Column(String(32), nullable=True)  # Human-readable display number
    webhook_token = Column(String(128), nullable=False)
    verify_token = Column(String(255), nullable=True)
    webhook_verified = Column(Boolean, nullable=False, default=False)
    api_version = Column(String(16), nullable=False, default=DEFAULT_API_VERSION)
    access_token_added = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("webhook_token", name="uq_inbox_credentials_webhook_token"),
        Index("idx_inbox_credentials_phone_number_id", "phone_number_id"),
    )


class Contact(InboxBase):
    """A counterparty, identified by phone number."""

    __tablename__ = "inbox_contacts"

    id = Column(String(32), primary_key=True)  # Phone number as sent by WhatsApp
    name = Column(String(255), nullable=False)
    whatsapp_name = Column(String(255), nullable=True)  # Profile name from the last message
    custom_name = Column(String(255), nullable=True)  # Set by the tenant, never overwritten here
    last_active = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Message(InboxBase):
    """
    A normalized WhatsApp message.

    ``id`` is the provider message id; inserting the same id twice is a no-op.
    On inbound messages the receiver is the tenant, on outbound the counterparty.
    """

    __tablename__ = "inbox_messages"

    id = Column(String(255), primary_key=True)
    sender_id = Column(String(64), nullable=False)
    receiver_id = Column(String(64), nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    is_sent_by_me = Column(Boolean, nullable=False, default=False)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    message_type = Column(String(20), nullable=False, default=MessageType.TEXT.value)
    media_data = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_inbox_messages_sender", "sender_id"),
        Index("idx_inbox_messages_receiver", "receiver_id"),
        Index("idx_inbox_messages_timestamp", "timestamp"),
        Index("idx_inbox_messages_conversation", "sender_id", "receiver_id", "timestamp"),
        Index("idx_inbox_messages_unread", "receiver_id", "is_read"),
    )
