"""
Inbox Redis Streams

Producer and consumer for inbound WhatsApp events.
"""

from whatsapp_inbox.streams.consumer import InboxStreamConsumer
from whatsapp_inbox.streams.groups import (
    DLQ_STREAM,
    INBOUND_STREAM,
    INGESTION_GROUP,
    StreamConfig,
    ensure_inbox_streams,
)
from whatsapp_inbox.streams.producer import InboxStreamProducer

__all__ = [
    "InboxStreamProducer",
    "InboxStreamConsumer",
    "ensure_inbox_streams",
    "StreamConfig",
    "INBOUND_STREAM",
    "DLQ_STREAM",
    "INGESTION_GROUP",
]
