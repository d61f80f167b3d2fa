"""
Tests for the administration CLI.
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import redis
from typer.testing import CliRunner

from whatsapp_inbox.cli import main as cli
from whatsapp_inbox.contracts.envelope import InboxEnvelope
from whatsapp_inbox.contracts.event_types import InboxEventType
from whatsapp_inbox.persistence.models import Message, TenantCredentials
from whatsapp_inbox.streams.groups import DLQ_STREAM, INBOUND_STREAM, INGESTION_GROUP
from whatsapp_inbox.streams.producer import InboxStreamProducer

from inbox_factories import SENDER, TENANT_ID, TEST_BUCKET, WEBHOOK_TOKEN, change_value, text_message

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_db(db, monkeypatch):
    monkeypatch.setattr(cli, "get_db", lambda: db)
    return db


class TestTenantCommands:

    def test_create_tenant_prints_callback_url(self, db):
        result = runner.invoke(
            cli.app,
            ["create-tenant", "tenant-7", "--verify-token", "vt", "--phone-number-id", "P7",
             "--base-url", "https://inbox.example.com/"],
        )

        assert result.exit_code == 0, result.output
        credentials = db.get(TenantCredentials, "tenant-7")
        assert credentials.phone_number_id == "P7"
        assert "https://inbox.example.com/webhook/" in result.output
        assert credentials.webhook_token[:24] in result.output

    def test_create_existing_tenant_fails(self, tenant):
        result = runner.invoke(cli.app, ["create-tenant", TENANT_ID, "--verify-token", "vt"])

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_rotate_requires_confirmation(self, db, tenant):
        result = runner.invoke(cli.app, ["rotate-webhook-token", TENANT_ID], input="n\n")

        assert result.exit_code == 0
        assert db.get(TenantCredentials, TENANT_ID).webhook_token == WEBHOOK_TOKEN

    def test_rotate_forced(self, db, tenant):
        result = runner.invoke(cli.app, ["rotate-webhook-token", TENANT_ID, "--force"])

        assert result.exit_code == 0
        assert db.get(TenantCredentials, TENANT_ID).webhook_token != WEBHOOK_TOKEN

    def test_show_unknown_tenant(self):
        result = runner.invoke(cli.app, ["show-tenant", "ghost"])

        assert result.exit_code == 1


@pytest.fixture
def redis_client(monkeypatch):
    client = MagicMock()
    monkeypatch.setattr(cli, "get_redis", lambda: client)
    return client


def dead_lettered(client) -> tuple[InboxEnvelope, dict]:
    """Dead-letter an inbound envelope through the producer; return it and the DLQ entry fields."""
    original = InboxEnvelope.create(
        event_type=InboxEventType.INBOUND_RECEIVED.value,
        tenant_id=TENANT_ID,
        payload=change_value([text_message()]),
        metadata={"stream_msg_id": "5-0"},
    )
    InboxStreamProducer(client).dead_letter(original, error="boom", delivery_count=5)
    _, data = client.xadd.call_args.args
    client.xadd.reset_mock()
    return original, data


class TestRefreshUrl:

    @pytest.fixture(autouse=True)
    def cli_relay(self, relay, monkeypatch):
        monkeypatch.setattr(cli, "get_relay", lambda settings, client: relay)

    def test_refreshes_stored_media(self, db, s3_stub):
        db.add(Message(
            id="wamid.IMG1",
            sender_id=SENDER,
            receiver_id=TENANT_ID,
            content="[Image]",
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
            is_sent_by_me=False,
            message_type="image",
            media_data={"type": "image", "id": "123456", "mime_type": "image/jpeg"},
        ))
        db.commit()
        s3_stub.add_response("head_object", {}, {"Bucket": TEST_BUCKET, "Key": f"{SENDER}/123456.jpg"})

        result = runner.invoke(cli.app, ["refresh-url", "wamid.IMG1", "--requester-id", TENANT_ID])

        assert result.exit_code == 0, result.output
        assert "URL refreshed" in result.output
        media = db.get(Message, "wamid.IMG1").media_data
        assert media["relay_status"] == "uploaded"
        assert f"{SENDER}/123456.jpg" in media["media_url"]

    def test_unknown_message(self):
        result = runner.invoke(cli.app, ["refresh-url", "wamid.NOPE", "--requester-id", TENANT_ID])

        assert result.exit_code == 1
        assert "not_found" in result.output


class TestReplayDlq:

    def test_republishes_original_and_deletes_entry(self, redis_client):
        original, dlq_data = dead_lettered(redis_client)
        redis_client.xrange.return_value = [("9-0", dlq_data)]
        redis_client.xadd.return_value = "10-0"

        result = runner.invoke(cli.app, ["replay-dlq", "--limit", "5"])

        assert result.exit_code == 0, result.output
        redis_client.xrange.assert_called_once_with(DLQ_STREAM, min="-", max="+", count=5)
        stream, data = redis_client.xadd.call_args.args
        assert stream == INBOUND_STREAM
        assert data["event_id"] == str(original.event_id)
        assert json.loads(data["payload"]) == original.payload
        assert "stream_msg_id" not in json.loads(data["metadata"])
        redis_client.xdel.assert_called_once_with(DLQ_STREAM, "9-0")
        assert "Replayed 1 messages" in result.output

    def test_entry_without_original_is_kept(self, redis_client):
        entry = InboxEnvelope.create(
            event_type=InboxEventType.DLQ_ENTRY.value,
            tenant_id=TENANT_ID,
            payload={"error": "boom"},
        )
        redis_client.xrange.return_value = [("9-0", entry.to_stream_data())]

        result = runner.invoke(cli.app, ["replay-dlq"])

        assert result.exit_code == 0
        redis_client.xadd.assert_not_called()
        redis_client.xdel.assert_not_called()
        assert "Skipping 9-0" in result.output

    def test_empty_dlq(self, redis_client):
        redis_client.xrange.return_value = []

        result = runner.invoke(cli.app, ["replay-dlq"])

        assert result.exit_code == 0
        assert "No messages in DLQ" in result.output


class TestStreamInfo:

    def test_prints_groups(self, redis_client):
        redis_client.xinfo_stream.return_value = {"length": 2, "first-entry": ("1-0", {}), "last-entry": ("2-0", {})}
        redis_client.xinfo_groups.return_value = [{"name": INGESTION_GROUP, "pending": 1, "consumers": 3}]

        result = runner.invoke(cli.app, ["stream-info"])

        assert result.exit_code == 0, result.output
        redis_client.xinfo_stream.assert_called_once_with(INBOUND_STREAM)
        assert "Length: 2" in result.output
        assert f"{INGESTION_GROUP}: 1 pending, 3 consumers" in result.output

    def test_missing_stream(self, redis_client):
        redis_client.xinfo_stream.side_effect = redis.ResponseError("no such key")

        result = runner.invoke(cli.app, ["stream-info", "--stream", DLQ_STREAM])

        assert result.exit_code == 0
        assert "does not exist" in result.output
