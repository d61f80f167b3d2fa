"""
WhatsApp Providers

Inbound message model and the Meta Cloud API integration.
"""

from whatsapp_inbox.providers.base import (
    InboundBatch,
    InboundKind,
    InboundMessage,
    ProviderError,
)

__all__ = [
    "InboundBatch",
    "InboundKind",
    "InboundMessage",
    "ProviderError",
]
