"""
Inbox Contracts

Event types, envelope and payload models shared by the webhook, the worker
and the HTTP read side.
"""

from whatsapp_inbox.contracts.envelope import InboxEnvelope
from whatsapp_inbox.contracts.event_types import InboxEventType
from whatsapp_inbox.contracts.payloads import (
    ConversationSummary,
    ErrorResponse,
    MediaDescriptor,
    MessageType,
    MessageView,
    RefreshUrlRequest,
    RefreshUrlResponse,
    RelayStatus,
)

__all__ = [
    "InboxEnvelope",
    "InboxEventType",
    "ConversationSummary",
    "ErrorResponse",
    "MediaDescriptor",
    "MessageType",
    "MessageView",
    "RefreshUrlRequest",
    "RefreshUrlResponse",
    "RelayStatus",
]
