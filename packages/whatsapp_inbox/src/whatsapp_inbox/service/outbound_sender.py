"""
Outbound Message Sender

Sends text and media messages from a tenant to a counterparty:
1. Normalizes the recipient phone number
2. Loads the tenant's credentials and access token
3. Sends via the Graph API (media is uploaded to WhatsApp first)
4. Keeps a copy of outbound media in object storage, under the recipient
5. Records the message as sent by the tenant

Once the provider accepted a message, storage problems are logged and
reported in the result; they never turn the send into a failure.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whatsapp_inbox.contracts.payloads import MediaDescriptor, MessageType
from whatsapp_inbox.persistence.models import TenantCredentials, utcnow
from whatsapp_inbox.persistence.repo import InboxRepository
from whatsapp_inbox.providers.base import ProviderError
from whatsapp_inbox.providers.meta_cloud.client import DEFAULT_API_VERSION, MetaCloudClient
from whatsapp_inbox.routing.credential_store import CredentialStore
from whatsapp_inbox.storage.object_relay import ObjectRelay

logger = logging.getLogger(__name__)

RECIPIENT_PATTERN = re.compile(r"^\d{10,15}$")

PLACEHOLDERS = {
    "image": "[Image]",
    "video": "[Video]",
    "audio": "[Audio]",
}


class SendError(Exception):
    """User-visible send failure."""

    def __init__(
        self,
        reason: str,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.status_code = status_code
        self.details = details or {}


@dataclass(frozen=True)
class SentMessage:
    message_id: str
    recipient: str
    message_type: str
    timestamp: datetime
    stored: bool
    relay_status: str | None = None


def normalize_recipient(to: str | None) -> str:
    """
    Digits-only phone number with country code, as the Cloud API expects.

    Raises:
        SendError: fewer than 10 or more than 15 digits
    """
    digits = re.sub(r"\D", "", to or "")
    if not RECIPIENT_PATTERN.match(digits):
        raise SendError(
            "invalid_recipient",
            "Phone number must contain 10-15 digits including the country code",
        )
    return digits


def media_type_for(mime_type: str | None) -> str:
    """WhatsApp media kind for a MIME type; anything unrecognised goes as a document."""
    major = (mime_type or "").split("/", 1)[0].lower()
    return major if major in ("image", "video", "audio") else "document"


def display_content(media_type: str, caption: str | None, filename: str | None) -> str:
    if media_type == "document":
        return caption or f"[Document: {filename or 'Unknown'}]"
    if media_type == "audio":
        return PLACEHOLDERS["audio"]
    return caption or PLACEHOLDERS[media_type]


class OutboundSender:
    """
    Sends messages on behalf of a tenant.

    Args:
        db: Session used for all reads and writes
        store: Credential store over the same session
        relay: Object relay keeping copies of outbound media
        client: Graph API client
    """

    def __init__(
        self,
        db: Session,
        store: CredentialStore,
        relay: ObjectRelay,
        client: MetaCloudClient,
    ):
        self.db = db
        self.store = store
        self.repo = InboxRepository(db)
        self.relay = relay
        self.client = client

    def _sending_credentials(self, tenant_id: str) -> tuple[TenantCredentials, str]:
        credentials = self.store.get(tenant_id)
        access_token = self.store.get_access_token(credentials) if credentials else None
        if credentials is None or not credentials.phone_number_id or not access_token:
            raise SendError(
                "not_configured",
                "WhatsApp settings not found. Configure credentials before sending.",
            )
        return credentials, access_token

    async def send_text(self, tenant_id: str, to: str | None, text: str | None) -> SentMessage:
        """
        Send a text message and record it.

        Raises:
            SendError: invalid input, missing credentials, or the provider refused
        """
        recipient = normalize_recipient(to)
        if not text or not text.strip():
            raise SendError("invalid_request", "Message text is required")

        credentials, access_token = self._sending_credentials(tenant_id)

        try:
            provider_id = await self.client.send_text(
                credentials.phone_number_id,
                access_token,
                to=recipient,
                text=text,
                api_version=credentials.api_version or DEFAULT_API_VERSION,
            )
        except ProviderError as e:
            raise self._send_failed(e, tenant_id, recipient)

        sent_at = utcnow()
        message_id = provider_id or f"outgoing_{uuid4().hex}"
        stored = self._record(
            message_id,
            tenant_id,
            recipient,
            content=text,
            sent_at=sent_at,
            message_type=MessageType.TEXT,
        )
        return SentMessage(message_id, recipient, MessageType.TEXT.value, sent_at, stored)

    async def send_media(
        self,
        tenant_id: str,
        to: str | None,
        content: bytes,
        filename: str | None,
        mime_type: str | None,
        caption: str | None = None,
    ) -> SentMessage:
        """
        Upload a file to WhatsApp, send it, keep a copy, and record the message.

        The copy is stored under the recipient, where refresh looks for media
        of messages sent by the tenant.

        Raises:
            SendError: invalid input, missing credentials, or the provider refused
        """
        recipient = normalize_recipient(to)
        if not content:
            raise SendError("invalid_request", "File is empty")

        mime_type = mime_type or "application/octet-stream"
        media_type = media_type_for(mime_type)
        caption = caption or None
        credentials, access_token = self._sending_credentials(tenant_id)
        api_version = credentials.api_version or DEFAULT_API_VERSION

        try:
            media_id = await self.client.upload_media(
                credentials.phone_number_id,
                access_token,
                content,
                filename or f"upload.{media_type}",
                mime_type,
                api_version=api_version,
            )
            provider_id = await self.client.send_media(
                credentials.phone_number_id,
                access_token,
                to=recipient,
                media_type=media_type,
                media_id=media_id,
                caption=caption,
                filename=filename,
                api_version=api_version,
            )
        except ProviderError as e:
            raise self._send_failed(e, tenant_id, recipient)

        descriptor = MediaDescriptor(
            type=media_type,
            id=media_id,
            mime_type=mime_type,
            filename=filename,
            caption=caption,
        )
        try:
            copy = await self.relay.store_object(recipient, media_id, mime_type, content)
            descriptor.mark_uploaded(copy.storage_key, copy.signed_url, copy.uploaded_at)
        except ProviderError as e:
            logger.warning(
                f"Sent media {media_id} but could not keep a copy: {e}",
                extra={"tenant_id": tenant_id, "code": e.code},
            )
            descriptor.mark_failed(f"Failed to upload media: {e}")

        sent_at = utcnow()
        message_id = provider_id or f"outgoing_media_{uuid4().hex}"
        stored = self._record(
            message_id,
            tenant_id,
            recipient,
            content=display_content(media_type, caption, filename),
            sent_at=sent_at,
            message_type=MessageType(media_type),
            media=descriptor,
        )
        return SentMessage(
            message_id,
            recipient,
            media_type,
            sent_at,
            stored,
            relay_status=descriptor.relay_status.value,
        )

    def _send_failed(self, error: ProviderError, tenant_id: str, recipient: str) -> SendError:
        logger.error(
            f"Failed to send message via WhatsApp API: {error}",
            extra={"tenant_id": tenant_id, "to": recipient, "code": error.code},
        )
        return SendError(
            "send_failed",
            f"Failed to send message via WhatsApp API: {error}",
            status_code=502,
            details=error.details,
        )

    def _record(
        self,
        message_id: str,
        tenant_id: str,
        recipient: str,
        content: str,
        sent_at: datetime,
        message_type: MessageType,
        media: MediaDescriptor | None = None,
    ) -> bool:
        """Store the sent message. Returns False when the write failed."""
        try:
            self.repo.upsert_contact(recipient, recipient, last_active=sent_at)
            self.repo.insert_message_if_absent(
                id=message_id,
                sender_id=tenant_id,
                receiver_id=recipient,
                content=content,
                timestamp=sent_at,
                is_sent_by_me=True,
                is_read=True,
                message_type=message_type.value,
                media_data=media.to_stored() if media else None,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Sent message {message_id} could not be stored: {e}",
                exc_info=True,
                extra={"tenant_id": tenant_id},
            )
            return False

        logger.info(
            f"Sent {message_type.value} message",
            extra={"message_id": message_id, "tenant_id": tenant_id, "to": recipient},
        )
        return True
