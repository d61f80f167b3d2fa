"""
Inbox Stream Consumer

Consumes events from Redis Streams using XREADGROUP, with pending-entry
reclaim for events whose consumer died or failed.
"""

import logging
from typing import Any

import redis

from whatsapp_inbox.contracts.envelope import InboxEnvelope
from whatsapp_inbox.streams.groups import INGESTION_GROUP

logger = logging.getLogger(__name__)


class InboxStreamConsumer:
    """
    Consumer for reading inbox events from Redis Streams.

    Unacknowledged entries stay in the group's pending list and are picked up
    again through reclaim_pending().
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        consumer_name: str,
        group_name: str = INGESTION_GROUP,
    ):
        self.redis = redis_client
        self.consumer_name = consumer_name
        self.group_name = group_name

    def _parse_entries(
        self,
        stream_name: str,
        entries: list[tuple[str, dict[str, str]]],
    ) -> list[tuple[str, InboxEnvelope]]:
        messages = []
        for msg_id, data in entries:
            # XCLAIM returns None data for entries deleted in the meantime
            if not data:
                self.ack(stream_name, msg_id)
                continue
            try:
                envelope = InboxEnvelope.from_stream_message(msg_id, data)
            except (KeyError, ValueError) as e:
                logger.error(f"Failed to parse message {msg_id}: {e}")
                # ACK invalid messages to prevent blocking
                self.ack(stream_name, msg_id)
                continue
            messages.append((msg_id, envelope))
        return messages

    def read_messages(
        self,
        stream_name: str,
        count: int = 10,
        block_ms: int = 5000,
    ) -> list[tuple[str, InboxEnvelope]]:
        """
        Read new messages from a stream.

        Returns:
            List of (message_id, envelope) tuples
        """
        try:
            result = self.redis.xreadgroup(
                self.group_name,
                self.consumer_name,
                {stream_name: ">"},
                count=count,
                block=block_ms,
            )
        except redis.ResponseError as e:
            if "NOGROUP" in str(e):
                logger.error(f"Consumer group {self.group_name} does not exist for {stream_name}")
            raise

        if not result:
            return []

        messages = []
        for _stream, entries in result:
            messages.extend(self._parse_entries(stream_name, entries))
        return messages

    def ack(self, stream_name: str, message_id: str) -> int:
        """Acknowledge a message as processed."""
        return self.redis.xack(stream_name, self.group_name, message_id)

    def get_pending(
        self,
        stream_name: str,
        min_idle_ms: int = 60000,
        count: int = 100,
    ) -> list[dict[str, Any]]:
        """
        Pending messages idle for at least ``min_idle_ms``.

        Returns:
            List of {message_id, consumer, idle_ms, delivery_count}
        """
        try:
            pending_info = self.redis.xpending(stream_name, self.group_name)
            if not pending_info or pending_info.get("pending", 0) == 0:
                return []

            pending_range = self.redis.xpending_range(
                stream_name,
                self.group_name,
                min="-",
                max="+",
                count=count,
            )
        except redis.ResponseError as e:
            logger.error(f"Failed to read pending entries of {stream_name}: {e}")
            return []

        return [
            {
                "message_id": entry["message_id"],
                "consumer": entry["consumer"],
                "idle_ms": entry["time_since_delivered"],
                "delivery_count": entry["times_delivered"],
            }
            for entry in pending_range
            if entry.get("time_since_delivered", 0) >= min_idle_ms
        ]

    def claim_messages(
        self,
        stream_name: str,
        message_ids: list[str],
        min_idle_ms: int = 60000,
    ) -> list[tuple[str, InboxEnvelope]]:
        """Claim pending messages for this consumer."""
        if not message_ids:
            return []

        try:
            result = self.redis.xclaim(
                stream_name,
                self.group_name,
                self.consumer_name,
                min_idle_ms,
                message_ids,
            )
        except redis.ResponseError as e:
            logger.error(f"Failed to claim messages: {e}")
            return []

        return self._parse_entries(stream_name, result)

    def reclaim_pending(
        self,
        stream_name: str,
        min_idle_ms: int = 60000,
        count: int = 100,
    ) -> list[tuple[str, InboxEnvelope, int]]:
        """
        Claim idle pending messages.

        Returns:
            List of (message_id, envelope, delivery_count) tuples
        """
        pending = self.get_pending(stream_name, min_idle_ms, count)
        if not pending:
            return []

        deliveries = {p["message_id"]: p["delivery_count"] for p in pending}
        claimed = self.claim_messages(stream_name, list(deliveries), min_idle_ms)

        # XCLAIM bumps the delivery counter
        return [
            (msg_id, envelope, deliveries.get(msg_id, 0) + 1)
            for msg_id, envelope in claimed
        ]

    def read_range(
        self,
        stream_name: str,
        count: int = 100,
    ) -> list[tuple[str, InboxEnvelope]]:
        """Read entries by id range, outside the consumer group (DLQ replay)."""
        entries = self.redis.xrange(stream_name, min="-", max="+", count=count)
        messages = []
        for msg_id, data in entries:
            try:
                messages.append((msg_id, InboxEnvelope.from_stream_message(msg_id, data)))
            except (KeyError, ValueError) as e:
                logger.error(f"Failed to parse message {msg_id}: {e}")
        return messages
