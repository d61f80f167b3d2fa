"""
Tests for the inbox stream envelope, producer and consumer.

Redis is replaced by a MagicMock; only the calls made are checked.
"""

import json
from unittest.mock import MagicMock

import pytest
import redis

from whatsapp_inbox.contracts.envelope import InboxEnvelope
from whatsapp_inbox.contracts.event_types import InboxEventType
from whatsapp_inbox.providers.meta_cloud.webhook import parse_change_value
from whatsapp_inbox.streams.consumer import InboxStreamConsumer
from whatsapp_inbox.streams.groups import (
    DLQ_STREAM,
    INBOUND_STREAM,
    INGESTION_GROUP,
    ensure_inbox_streams,
    ensure_stream_group,
    get_stream_info,
)
from whatsapp_inbox.streams.producer import InboxStreamProducer

from inbox_factories import PHONE_NUMBER_ID, TENANT_ID, change_value, text_message


def make_envelope(**kwargs) -> InboxEnvelope:
    return InboxEnvelope.create(
        event_type=InboxEventType.INBOUND_RECEIVED.value,
        tenant_id=TENANT_ID,
        payload=kwargs.pop("payload", change_value([text_message()])),
        **kwargs,
    )


class TestEnvelope:

    def test_stream_data_roundtrip(self):
        envelope = make_envelope(correlation_id="wamid.TEXT1")

        data = envelope.to_stream_data()
        parsed = InboxEnvelope.from_stream_message("1-0", data)

        assert all(isinstance(v, str) for v in data.values())
        assert parsed.event_id == envelope.event_id
        assert parsed.tenant_id == TENANT_ID
        assert parsed.payload == envelope.payload
        assert parsed.correlation_id == "wamid.TEXT1"
        assert parsed.metadata["stream_msg_id"] == "1-0"

    def test_dict_roundtrip(self):
        envelope = make_envelope()
        assert InboxEnvelope.from_dict(envelope.to_dict()).occurred_at == envelope.occurred_at


class TestGroups:

    def test_creates_groups(self):
        client = MagicMock()

        ensure_inbox_streams(client)

        streams = [c.args[0] for c in client.xgroup_create.call_args_list]
        assert streams == [INBOUND_STREAM, DLQ_STREAM]
        assert all(c.args[1] == INGESTION_GROUP for c in client.xgroup_create.call_args_list)

    def test_existing_group(self):
        client = MagicMock()
        client.xgroup_create.side_effect = redis.ResponseError("BUSYGROUP Consumer Group name already exists")

        assert ensure_stream_group(client, INBOUND_STREAM, INGESTION_GROUP) is False

    def test_other_errors_raise(self):
        client = MagicMock()
        client.xgroup_create.side_effect = redis.ResponseError("WRONGTYPE")

        with pytest.raises(redis.ResponseError):
            ensure_stream_group(client, INBOUND_STREAM, INGESTION_GROUP)


class TestProducer:

    def test_publish_inbound(self):
        client = MagicMock()
        client.xadd.return_value = "1700000000000-0"
        producer = InboxStreamProducer(client, max_len=500)
        value = change_value([text_message()])
        batch = parse_change_value(value)

        msg_id = producer.publish_inbound(TENANT_ID, batch)

        assert msg_id == "1700000000000-0"
        stream, data = client.xadd.call_args.args
        assert stream == INBOUND_STREAM
        assert client.xadd.call_args.kwargs == {"maxlen": 500, "approximate": True}
        assert data["event_type"] == InboxEventType.INBOUND_RECEIVED.value
        assert data["tenant_id"] == TENANT_ID
        assert data["correlation_id"] == "wamid.TEXT1"
        assert json.loads(data["payload"]) == batch.to_payload()
        assert json.loads(data["metadata"]) == {"routing_id": PHONE_NUMBER_ID, "message_count": 1}

    def test_dead_letter(self):
        client = MagicMock()
        producer = InboxStreamProducer(client)
        original = make_envelope()

        producer.dead_letter(original, error="boom", delivery_count=5)

        stream, data = client.xadd.call_args.args
        assert stream == DLQ_STREAM
        assert data["event_type"] == InboxEventType.DLQ_ENTRY.value
        payload = json.loads(data["payload"])
        assert payload["error"] == "boom"
        assert payload["delivery_count"] == 5
        assert "failed_at" in payload
        assert InboxEnvelope.from_dict(payload["original_event"]).event_id == original.event_id

    def test_replay_dead_letter(self):
        client = MagicMock()
        producer = InboxStreamProducer(client)
        original = make_envelope()
        original.metadata["stream_msg_id"] = "1-0"
        producer.dead_letter(original, error="boom", delivery_count=5)
        _, dlq_data = client.xadd.call_args.args
        entry = InboxEnvelope.from_stream_message("9-0", dlq_data)

        producer.replay_dead_letter(entry)

        stream, data = client.xadd.call_args.args
        assert stream == INBOUND_STREAM
        replayed = InboxEnvelope.from_stream_message("10-0", data)
        assert replayed.event_id == original.event_id
        assert replayed.payload == original.payload
        assert json.loads(data["metadata"]) == {}

    def test_replay_without_original_event(self):
        producer = InboxStreamProducer(MagicMock())
        entry = make_envelope(payload={"error": "boom"})

        with pytest.raises(ValueError):
            producer.replay_dead_letter(entry)


class TestConsumer:

    def test_read_messages(self):
        envelope = make_envelope()
        client = MagicMock()
        client.xreadgroup.return_value = [(INBOUND_STREAM, [("1-0", envelope.to_stream_data())])]
        consumer = InboxStreamConsumer(client, "worker-1")

        messages = consumer.read_messages(INBOUND_STREAM, count=5, block_ms=10)

        assert [(m, e.event_id) for m, e in messages] == [("1-0", envelope.event_id)]
        client.xreadgroup.assert_called_once_with(
            INGESTION_GROUP, "worker-1", {INBOUND_STREAM: ">"}, count=5, block=10
        )
        client.xack.assert_not_called()

    def test_invalid_entries_acked(self):
        client = MagicMock()
        client.xreadgroup.return_value = [(INBOUND_STREAM, [("1-0", {"garbage": "x"})])]
        consumer = InboxStreamConsumer(client, "worker-1")

        assert consumer.read_messages(INBOUND_STREAM) == []
        client.xack.assert_called_once_with(INBOUND_STREAM, INGESTION_GROUP, "1-0")

    def test_empty_read(self):
        client = MagicMock()
        client.xreadgroup.return_value = []

        assert InboxStreamConsumer(client, "worker-1").read_messages(INBOUND_STREAM) == []

    def test_reclaim_pending(self):
        envelope = make_envelope()
        client = MagicMock()
        client.xpending.return_value = {"pending": 2}
        client.xpending_range.return_value = [
            {"message_id": "1-0", "consumer": "dead", "time_since_delivered": 120000, "times_delivered": 3},
            {"message_id": "2-0", "consumer": "dead", "time_since_delivered": 10, "times_delivered": 1},
        ]
        client.xclaim.return_value = [("1-0", envelope.to_stream_data())]
        consumer = InboxStreamConsumer(client, "worker-1")

        reclaimed = consumer.reclaim_pending(INBOUND_STREAM, min_idle_ms=60000)

        assert [(m, e.event_id, n) for m, e, n in reclaimed] == [("1-0", envelope.event_id, 4)]
        client.xclaim.assert_called_once_with(INBOUND_STREAM, INGESTION_GROUP, "worker-1", 60000, ["1-0"])

    def test_nothing_pending(self):
        client = MagicMock()
        client.xpending.return_value = {"pending": 0}

        assert InboxStreamConsumer(client, "worker-1").reclaim_pending(INBOUND_STREAM) == []
        client.xclaim.assert_not_called()

    def test_read_range(self):
        envelope = make_envelope()
        client = MagicMock()
        client.xrange.return_value = [("1-0", envelope.to_stream_data()), ("2-0", {"garbage": "x"})]
        consumer = InboxStreamConsumer(client, "dlq-replay")

        entries = consumer.read_range(DLQ_STREAM, count=10)

        assert [(m, e.event_id) for m, e in entries] == [("1-0", envelope.event_id)]
        client.xrange.assert_called_once_with(DLQ_STREAM, min="-", max="+", count=10)
        client.xack.assert_not_called()


class TestStreamInfo:

    def test_summary(self):
        client = MagicMock()
        client.xinfo_stream.return_value = {
            "length": 3,
            "first-entry": ("1-0", {}),
            "last-entry": ("3-0", {}),
        }
        client.xinfo_groups.return_value = [{"name": INGESTION_GROUP, "pending": 1, "consumers": 2}]

        info = get_stream_info(client, INBOUND_STREAM)

        assert info["length"] == 3
        assert info["first_entry"][0] == "1-0"
        assert info["last_entry"][0] == "3-0"
        assert info["groups"][0]["name"] == INGESTION_GROUP

    def test_missing_stream(self):
        client = MagicMock()
        client.xinfo_stream.side_effect = redis.ResponseError("no such key")

        info = get_stream_info(client, DLQ_STREAM)

        assert info["length"] == 0
        assert DLQ_STREAM in info["error"]
