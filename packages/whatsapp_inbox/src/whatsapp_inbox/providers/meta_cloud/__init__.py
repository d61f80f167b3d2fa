"""Meta Cloud API (WhatsApp Business) provider."""

from whatsapp_inbox.providers.meta_cloud.client import MetaCloudClient
from whatsapp_inbox.providers.meta_cloud.webhook import (
    parse_change_value,
    parse_meta_webhook,
    validate_signature,
)

__all__ = [
    "MetaCloudClient",
    "parse_change_value",
    "parse_meta_webhook",
    "validate_signature",
]
