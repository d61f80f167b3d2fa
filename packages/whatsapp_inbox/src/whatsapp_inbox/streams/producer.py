"""
Inbox Stream Producer

Appends accepted webhook changes to the inbound stream and moves envelopes
that exhausted their deliveries to the dead letter stream and back.
"""

import logging
from datetime import datetime, timezone

import redis

from whatsapp_inbox.contracts.envelope import InboxEnvelope
from whatsapp_inbox.contracts.event_types import InboxEventType
from whatsapp_inbox.providers.base import InboundBatch
from whatsapp_inbox.streams.groups import DLQ_STREAM, INBOUND_STREAM

logger = logging.getLogger(__name__)


class InboxStreamProducer:
    """
    Writes inbox envelopes with XADD, trimming each stream to about ``max_len``.
    """

    def __init__(self, redis_client: redis.Redis, max_len: int = 100000):
        self.redis = redis_client
        self.max_len = max_len

    def publish_inbound(self, tenant_id: str, batch: InboundBatch) -> str:
        """
        Queue one webhook change for a tenant.

        Only the change value travels; the worker reloads credentials by
        tenant id. The first message id becomes the correlation id.
        """
        envelope = InboxEnvelope.create(
            event_type=InboxEventType.INBOUND_RECEIVED.value,
            tenant_id=tenant_id,
            payload=batch.to_payload(),
            correlation_id=batch.messages[0].message_id if batch.messages else None,
            metadata={"routing_id": batch.routing_id, "message_count": len(batch.messages)},
        )
        return self._append(INBOUND_STREAM, envelope)

    def dead_letter(self, envelope: InboxEnvelope, error: str, delivery_count: int) -> str:
        """Park an envelope that kept failing, with the last error."""
        entry = InboxEnvelope.create(
            event_type=InboxEventType.DLQ_ENTRY.value,
            tenant_id=envelope.tenant_id,
            payload={
                "original_event": envelope.to_dict(),
                "error": error,
                "delivery_count": delivery_count,
                "failed_at": datetime.now(timezone.utc).isoformat(),
            },
            correlation_id=envelope.correlation_id,
        )
        logger.warning(
            "Dead-lettering inbound event",
            extra={
                "event_id": str(envelope.event_id),
                "tenant_id": envelope.tenant_id,
                "delivery_count": delivery_count,
            },
        )
        return self._append(DLQ_STREAM, entry)

    def replay_dead_letter(self, entry: InboxEnvelope) -> str:
        """
        Put the original event of a DLQ entry back on the inbound stream.

        The original keeps its event id; transport metadata from its earlier
        deliveries is dropped.

        Raises:
            ValueError: the entry carries no readable original event
        """
        original_event = entry.payload.get("original_event")
        if not original_event:
            raise ValueError("DLQ entry has no original_event")
        try:
            original = InboxEnvelope.from_dict(original_event)
        except KeyError as e:
            raise ValueError(f"original_event is missing {e}") from e

        original.metadata.pop("stream_msg_id", None)
        return self._append(INBOUND_STREAM, original)

    def _append(self, stream_name: str, envelope: InboxEnvelope) -> str:
        msg_id = self.redis.xadd(
            stream_name,
            envelope.to_stream_data(),
            maxlen=self.max_len,
            approximate=True,
        )
        logger.debug(
            f"XADD {stream_name} {msg_id}",
            extra={"event_type": envelope.event_type, "event_id": str(envelope.event_id)},
        )
        return msg_id
