"""
Inbox Repository

Database operations for credentials, contacts and messages.
Callers own the transaction: nothing here commits.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import case, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from whatsapp_inbox.persistence.models import Contact, Message, TenantCredentials, utcnow

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class InboxRepository:
    """Repository for inbox database operations."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Tenant Credentials
    # =========================================================================

    def get_credentials(self, tenant_id: str) -> TenantCredentials | None:
        return (
            self.db.query(TenantCredentials)
            .filter(TenantCredentials.tenant_id == tenant_id)
            .first()
        )

    def get_credentials_by_webhook_token(self, webhook_token: str) -> TenantCredentials | None:
        return (
            self.db.query(TenantCredentials)
            .filter(TenantCredentials.webhook_token == webhook_token)
            .first()
        )

    def add_credentials(self, credentials: TenantCredentials) -> TenantCredentials:
        self.db.add(credentials)
        self.db.flush()
        return credentials

    # =========================================================================
    # Contacts
    # =========================================================================

    def get_contact(self, phone: str) -> Contact | None:
        return self.db.query(Contact).filter(Contact.id == phone).first()

    def upsert_contact(
        self,
        phone: str,
        name: str,
        last_active: datetime | None = None,
        whatsapp_name: str | None = None,
    ) -> Contact:
        """
        Create the contact, or record activity on an existing one.

        ``name`` is only used on creation. Later calls update ``last_active``
        and, when the delivery carried a profile name, ``whatsapp_name``; a
        name that is still the bare phone number is upgraded to that profile
        name.
        """
        contact = self.get_contact(phone)
        if contact is None:
            contact = Contact(
                id=phone,
                name=name,
                whatsapp_name=whatsapp_name,
                last_active=last_active or utcnow(),
            )
            self.db.add(contact)
        else:
            if whatsapp_name:
                contact.whatsapp_name = whatsapp_name
                if contact.name == phone:
                    contact.name = whatsapp_name
            contact.last_active = last_active or utcnow()
        self.db.flush()
        return contact

    def set_custom_name(self, phone: str, custom_name: str | None) -> Contact | None:
        """Set or clear the tenant-chosen name. Returns None for an unknown contact."""
        contact = self.get_contact(phone)
        if contact is None:
            return None
        contact.custom_name = custom_name or None
        self.db.flush()
        return contact

    def get_contacts(self, phones: list[str]) -> dict[str, Contact]:
        if not phones:
            return {}
        contacts = self.db.query(Contact).filter(Contact.id.in_(phones)).all()
        return {c.id: c for c in contacts}

    # =========================================================================
    # Messages
    # =========================================================================

    def get_message(self, message_id: str) -> Message | None:
        return self.db.query(Message).filter(Message.id == message_id).first()

    def message_exists(self, message_id: str) -> bool:
        return (
            self.db.query(Message.id).filter(Message.id == message_id).first() is not None
        )

    def insert_message_if_absent(self, **values: Any) -> bool:
        """
        Insert a message unless one with the same id already exists.

        Uses INSERT ... ON CONFLICT DO NOTHING where the dialect supports it,
        otherwise a savepoint around a plain insert.

        Returns:
            True if a row was created, False for a duplicate id
        """
        dialect = self.db.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)

        if insert is not None:
            stmt = insert(Message).values(**values).on_conflict_do_nothing(index_elements=["id"])
            result = self.db.execute(stmt)
            return result.rowcount == 1

        try:
            with self.db.begin_nested():
                self.db.add(Message(**values))
            return True
        except IntegrityError:
            logger.debug(f"Message {values.get('id')} already stored")
            return False

    def update_media_descriptor(self, message: Message, media_data: dict[str, Any]) -> None:
        # Assign a new dict so the JSON column is flagged as changed
        message.media_data = dict(media_data)
        self.db.flush()

    def list_messages(
        self,
        tenant_id: str,
        counterparty_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Message]:
        """
        One page of a conversation, newest page first, returned oldest to newest.
        """
        rows = (
            self.db.query(Message)
            .filter(
                or_(
                    (Message.sender_id == tenant_id) & (Message.receiver_id == counterparty_id),
                    (Message.sender_id == counterparty_id) & (Message.receiver_id == tenant_id),
                )
            )
            .order_by(Message.timestamp.desc(), Message.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return list(reversed(rows))

    def has_conversation(self, tenant_id: str, counterparty_id: str) -> bool:
        return (
            self.db.query(Message.id)
            .filter(
                or_(
                    (Message.sender_id == tenant_id) & (Message.receiver_id == counterparty_id),
                    (Message.sender_id == counterparty_id) & (Message.receiver_id == tenant_id),
                )
            )
            .first()
            is not None
        )

    def mark_conversation_read(self, tenant_id: str, counterparty_id: str) -> int:
        """Mark inbound messages from a counterparty as read. Returns rows updated."""
        return (
            self.db.query(Message)
            .filter(
                Message.receiver_id == tenant_id,
                Message.sender_id == counterparty_id,
                Message.is_read == False,  # noqa: E712
            )
            .update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
        )

    def list_conversations(self, tenant_id: str) -> list[dict[str, Any]]:
        """
        Latest message and unread count per counterparty, newest first.
        """
        counterparty = case(
            (Message.sender_id == tenant_id, Message.receiver_id),
            else_=Message.sender_id,
        )
        ranked = (
            select(
                Message.id.label("message_id"),
                counterparty.label("counterparty_id"),
                func.row_number()
                .over(
                    partition_by=counterparty,
                    order_by=(Message.timestamp.desc(), Message.id.desc()),
                )
                .label("rn"),
            )
            .where(or_(Message.sender_id == tenant_id, Message.receiver_id == tenant_id))
            .subquery()
        )

        latest = (
            self.db.query(Message, ranked.c.counterparty_id)
            .join(ranked, ranked.c.message_id == Message.id)
            .filter(ranked.c.rn == 1)
            .order_by(Message.timestamp.desc())
            .all()
        )

        unread = dict(
            self.db.query(Message.sender_id, func.count(Message.id))
            .filter(
                Message.receiver_id == tenant_id,
                Message.is_sent_by_me == False,  # noqa: E712
                Message.is_read == False,  # noqa: E712
            )
            .group_by(Message.sender_id)
            .all()
        )

        contacts = self.get_contacts([counterparty_id for _, counterparty_id in latest])

        conversations = []
        for message, counterparty_id in latest:
            contact = contacts.get(counterparty_id)
            conversations.append({
                "counterparty_id": counterparty_id,
                "name": (contact.custom_name or contact.name) if contact else counterparty_id,
                "custom_name": contact.custom_name if contact else None,
                "whatsapp_name": contact.whatsapp_name if contact else None,
                "last_message": message.content,
                "last_message_type": message.message_type,
                "last_message_time": message.timestamp,
                "last_message_sender": message.sender_id,
                "unread_count": unread.get(counterparty_id, 0),
            })

        return conversations
