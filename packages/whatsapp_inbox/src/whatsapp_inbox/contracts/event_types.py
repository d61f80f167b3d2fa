"""
Inbox Event Types

Events carried on the inbox Redis streams.
"""

from enum import Enum


class InboxEventType(str, Enum):
    """
    Event types for the inbox pipeline.

    - INBOUND_RECEIVED: one webhook change (messages + contacts) accepted for a tenant
    - DLQ_ENTRY: an inbound event that kept failing and was dead-lettered
    """

    INBOUND_RECEIVED = "whatsapp_inbound_received"
    DLQ_ENTRY = "whatsapp_dlq_entry"

    def __str__(self) -> str:
        return self.value
