"""
Tests for InboxRepository read-side queries.
"""

from datetime import datetime, timedelta, timezone

import pytest

from whatsapp_inbox.persistence.models import Contact, Message
from whatsapp_inbox.persistence.repo import InboxRepository

from inbox_factories import TENANT_ID

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def add_message(db, message_id, sender, receiver, minutes, content="hi", is_read=False):
    db.add(Message(
        id=message_id,
        sender_id=sender,
        receiver_id=receiver,
        content=content,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        is_sent_by_me=sender == TENANT_ID,
        is_read=is_read,
        message_type="text",
    ))


@pytest.fixture
def conversation_data(db):
    """Two counterparties talking to the tenant plus noise from another tenant."""
    add_message(db, "m1", "111", TENANT_ID, 0, "first from 111")
    add_message(db, "m2", TENANT_ID, "111", 1, "reply to 111")
    add_message(db, "m3", "111", TENANT_ID, 2, "second from 111")
    add_message(db, "m4", "222", TENANT_ID, 5, "only from 222", is_read=True)
    add_message(db, "m5", "333", "other-tenant", 9, "not ours")
    db.add(Contact(id="111", name="Maria", whatsapp_name="Maria", custom_name="Maria (supplier)"))
    db.commit()


class TestInsertMessageIfAbsent:

    def test_duplicate_id_is_noop(self, db):
        repo = InboxRepository(db)
        values = dict(
            id="wamid.X",
            sender_id="111",
            receiver_id=TENANT_ID,
            content="original",
            timestamp=BASE_TIME,
            message_type="text",
        )

        assert repo.insert_message_if_absent(**values) is True
        assert repo.insert_message_if_absent(**dict(values, content="changed")) is False
        db.commit()

        assert db.query(Message).count() == 1
        assert db.get(Message, "wamid.X").content == "original"


class TestContacts:

    def test_upsert_keeps_existing_name(self, db):
        repo = InboxRepository(db)
        repo.upsert_contact("111", "Maria", whatsapp_name="Maria")
        later = BASE_TIME + timedelta(days=1)

        contact = repo.upsert_contact("111", "111", last_active=later)

        assert contact.name == "Maria"
        assert contact.whatsapp_name == "Maria"
        assert contact.last_active == later

    def test_upsert_records_new_profile_name(self, db):
        repo = InboxRepository(db)
        repo.upsert_contact("111", "Maria", whatsapp_name="Maria")

        contact = repo.upsert_contact("111", "Maria S.", whatsapp_name="Maria S.")

        assert contact.name == "Maria"
        assert contact.whatsapp_name == "Maria S."

    def test_custom_name(self, db):
        repo = InboxRepository(db)
        repo.upsert_contact("111", "Maria")

        assert repo.set_custom_name("111", "Maria (supplier)").custom_name == "Maria (supplier)"
        assert repo.set_custom_name("111", "").custom_name is None
        assert repo.set_custom_name("999", "Nobody") is None


class TestConversations:

    def test_latest_message_per_counterparty(self, db, conversation_data):
        conversations = InboxRepository(db).list_conversations(TENANT_ID)

        assert [c["counterparty_id"] for c in conversations] == ["222", "111"]

        maria = conversations[1]
        assert maria["last_message"] == "second from 111"
        assert maria["last_message_sender"] == "111"
        assert maria["unread_count"] == 2
        assert maria["name"] == "Maria (supplier)"
        assert maria["whatsapp_name"] == "Maria"

        unknown = conversations[0]
        assert unknown["name"] == "222"
        assert unknown["unread_count"] == 0

    def test_outbound_last_message(self, db, conversation_data):
        add_message(db, "m6", TENANT_ID, "111", 10, "latest reply")
        db.commit()

        maria = next(
            c for c in InboxRepository(db).list_conversations(TENANT_ID) if c["counterparty_id"] == "111"
        )

        assert maria["last_message"] == "latest reply"
        assert maria["last_message_sender"] == TENANT_ID

    def test_no_conversations(self, db):
        assert InboxRepository(db).list_conversations(TENANT_ID) == []


class TestMessages:

    def test_chronological_page(self, db, conversation_data):
        messages = InboxRepository(db).list_messages(TENANT_ID, "111")

        assert [m.id for m in messages] == ["m1", "m2", "m3"]

    def test_pagination_from_newest(self, db, conversation_data):
        repo = InboxRepository(db)

        assert [m.id for m in repo.list_messages(TENANT_ID, "111", limit=2)] == ["m2", "m3"]
        assert [m.id for m in repo.list_messages(TENANT_ID, "111", limit=2, offset=2)] == ["m1"]

    def test_other_tenants_invisible(self, db, conversation_data):
        assert InboxRepository(db).list_messages(TENANT_ID, "333") == []

    def test_mark_conversation_read(self, db, conversation_data):
        repo = InboxRepository(db)

        assert repo.mark_conversation_read(TENANT_ID, "111") == 2
        db.commit()
        db.expire_all()

        assert repo.mark_conversation_read(TENANT_ID, "111") == 0
        assert db.get(Message, "m1").is_read is True
        assert db.get(Message, "m1").read_at is not None
        # Outbound messages are untouched
        assert db.get(Message, "m2").is_read is False
