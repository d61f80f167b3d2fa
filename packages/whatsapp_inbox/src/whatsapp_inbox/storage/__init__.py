"""Durable media storage."""

from whatsapp_inbox.storage.mime import extension_for
from whatsapp_inbox.storage.object_relay import ObjectRelay, RelayError, RelayResult

__all__ = ["ObjectRelay", "RelayError", "RelayResult", "extension_for"]
