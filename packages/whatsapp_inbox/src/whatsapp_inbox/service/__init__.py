"""Inbox services: normalization, ingestion, outbound sending and media URL refresh."""

from whatsapp_inbox.service.inbound_handler import InboundHandler
from whatsapp_inbox.service.media_refresh import MediaRefreshService, RefreshError
from whatsapp_inbox.service.normalizer import NormalizedContent, normalize
from whatsapp_inbox.service.outbound_sender import OutboundSender, SendError

__all__ = [
    "InboundHandler",
    "MediaRefreshService",
    "NormalizedContent",
    "OutboundSender",
    "RefreshError",
    "SendError",
    "normalize",
]
