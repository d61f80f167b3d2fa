"""
Meta Webhook Utilities

Signature validation and parsing of WhatsApp Cloud API webhook payloads into
InboundBatch / InboundMessage values.

Parsing never raises on malformed entries: missing fields get defaults and
unknown message types become UnsupportedBody.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any

from whatsapp_inbox.providers.base import (
    AudioBody,
    DocumentBody,
    ImageBody,
    InboundBatch,
    InboundKind,
    InboundMessage,
    MediaRef,
    MessageBody,
    StickerBody,
    TextBody,
    UnsupportedBody,
    VideoBody,
)

logger = logging.getLogger(__name__)


def validate_signature(
    payload: bytes,
    signature_header: str | None,
    app_secret: str,
) -> bool:
    """
    Validate Meta webhook signature.

    Args:
        payload: Raw request body bytes
        signature_header: X-Hub-Signature-256 header value
        app_secret: Facebook App Secret

    Returns:
        True if signature is valid
    """
    if not signature_header:
        logger.warning("Missing signature header")
        return False

    if not signature_header.startswith("sha256="):
        logger.warning("Invalid signature format")
        return False

    expected = signature_header[7:]

    computed = hmac.new(
        app_secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(computed, expected)


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _parse_timestamp(raw: Any) -> datetime:
    """Unix seconds (as sent by Meta, usually a string) to an aware UTC datetime."""
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now(timezone.utc)


def _media_ref(section: dict[str, Any]) -> MediaRef:
    return MediaRef(
        media_id=_opt_str(section.get("id")),
        mime_type=_opt_str(section.get("mime_type")),
        sha256=_opt_str(section.get("sha256")),
    )


def _parse_body(kind: InboundKind, type_tag: str, section: dict[str, Any]) -> MessageBody:
    if kind == InboundKind.TEXT:
        return TextBody(body=str(section.get("body") or ""))
    if kind == InboundKind.IMAGE:
        return ImageBody(media=_media_ref(section), caption=_opt_str(section.get("caption")))
    if kind == InboundKind.DOCUMENT:
        return DocumentBody(
            media=_media_ref(section),
            filename=_opt_str(section.get("filename")),
            caption=_opt_str(section.get("caption")),
        )
    if kind == InboundKind.AUDIO:
        return AudioBody(media=_media_ref(section), voice=bool(section.get("voice")))
    if kind == InboundKind.VIDEO:
        return VideoBody(media=_media_ref(section), caption=_opt_str(section.get("caption")))
    if kind == InboundKind.STICKER:
        return StickerBody(media=_media_ref(section), animated=bool(section.get("animated")))
    return UnsupportedBody(type_tag=type_tag)


def parse_inbound_message(msg_data: dict[str, Any]) -> InboundMessage:
    """
    Parse one entry of ``value.messages``.

    Example entry:
        {"from": "5511888888888", "id": "wamid.HBgM", "timestamp": "1704067200",
         "type": "image", "image": {"id": "123456", "mime_type": "image/jpeg", ...}}
    """
    msg_data = _as_dict(msg_data)
    type_tag = str(msg_data.get("type") or "unknown")
    kind = InboundKind.from_tag(type_tag)

    return InboundMessage(
        message_id=str(msg_data.get("id") or ""),
        from_phone=str(msg_data.get("from") or ""),
        timestamp=_parse_timestamp(msg_data.get("timestamp")),
        kind=kind,
        body=_parse_body(kind, type_tag, _as_dict(msg_data.get(type_tag))),
        type_tag=type_tag,
        raw_payload=msg_data,
    )


def parse_change_value(
    value: dict[str, Any],
    business_account_id: str | None = None,
) -> InboundBatch:
    """
    Parse one ``change.value`` object.

    Also accepts the payload produced by ``InboundBatch.to_payload()``.
    """
    value = _as_dict(value)
    metadata = _as_dict(value.get("metadata"))

    contacts: dict[str, str] = {}
    for contact in _as_list(value.get("contacts")):
        contact = _as_dict(contact)
        wa_id = _opt_str(contact.get("wa_id"))
        name = _opt_str(_as_dict(contact.get("profile")).get("name"))
        if wa_id and name:
            contacts[wa_id] = name

    messages = []
    for msg_data in _as_list(value.get("messages")):
        message = parse_inbound_message(msg_data)
        if not message.message_id or not message.from_phone:
            logger.warning(
                "Skipping message entry without id or sender",
                extra={"message_id": message.message_id, "type": message.type_tag},
            )
            continue
        messages.append(message)

    return InboundBatch(
        routing_id=_opt_str(metadata.get("phone_number_id")),
        business_account_id=business_account_id or _opt_str(value.get("business_account_id")),
        messages=messages,
        contacts=contacts,
        raw_value=value,
    )


def parse_meta_webhook(payload: dict[str, Any]) -> list[InboundBatch]:
    """
    Parse a full webhook delivery into one batch per change.

    Webhook format:
    {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "WABA_ID",
            "changes": [{
                "value": {
                    "metadata": {"phone_number_id": "..."},
                    "contacts": [...],
                    "messages": [...],
                    "statuses": [...]
                },
                "field": "messages"
            }]
        }]
    }
    """
    batches: list[InboundBatch] = []

    for entry in _as_list(_as_dict(payload).get("entry")):
        entry = _as_dict(entry)
        waba_id = _opt_str(entry.get("id"))

        for change in _as_list(entry.get("changes")):
            change = _as_dict(change)
            if change.get("field", "messages") != "messages":
                continue
            batches.append(parse_change_value(change.get("value"), business_account_id=waba_id))

    return batches
