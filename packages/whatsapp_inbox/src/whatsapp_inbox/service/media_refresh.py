"""
Media URL Refresh

Issues a new signed URL for media that was already relayed, looked up by
message id. Only the sender or receiver of the message may refresh it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whatsapp_inbox.contracts.payloads import MediaDescriptor
from whatsapp_inbox.persistence.models import Message, utcnow
from whatsapp_inbox.persistence.repo import InboxRepository
from whatsapp_inbox.providers.base import ProviderError
from whatsapp_inbox.storage.object_relay import ObjectRelay

logger = logging.getLogger(__name__)


class RefreshError(Exception):
    """User-visible refresh failure."""

    def __init__(self, reason: str, message: str, status_code: int = 400):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.status_code = status_code


# Unknown message and foreign message look the same to the caller
NOT_FOUND = ("not_found", "Message not found", 404)


@dataclass(frozen=True)
class RefreshResult:
    message_id: str
    media_url: str
    refreshed_at: datetime


def media_owner_id(message: Message) -> str:
    """Storage namespace of a message's media: the non-tenant party."""
    return message.receiver_id if message.is_sent_by_me else message.sender_id


class MediaRefreshService:
    """Refresh signed URLs of stored media."""

    def __init__(self, db: Session, relay: ObjectRelay):
        self.db = db
        self.repo = InboxRepository(db)
        self.relay = relay

    def _load_descriptor(self, message: Message) -> MediaDescriptor:
        if not message.media_data:
            raise RefreshError("no_media", "Message has no media data")

        try:
            descriptor = MediaDescriptor.from_stored(message.media_data)
        except (ValueError, ValidationError):
            raise RefreshError("invalid_media_data", "Invalid media data")

        if not descriptor.id or not descriptor.mime_type:
            raise RefreshError("media_data_incomplete", "Media data incomplete")

        return descriptor

    async def refresh(self, message_id: str | None, requester_id: str) -> RefreshResult:
        """
        Issue a fresh signed URL and record it on the message.

        Raises:
            RefreshError: with a machine-readable reason and HTTP status
        """
        if not message_id:
            raise RefreshError("invalid_request", "Message ID is required")

        message = self.repo.get_message(message_id)
        if message is None or requester_id not in (message.sender_id, message.receiver_id):
            if message is not None:
                logger.warning(
                    "Refresh denied",
                    extra={"message_id": message_id, "requester_id": requester_id},
                )
            raise RefreshError(*NOT_FOUND)

        descriptor = self._load_descriptor(message)
        owner_id = media_owner_id(message)

        try:
            key = ObjectRelay.storage_key(owner_id, descriptor.id, descriptor.mime_type)
            media_url = await self.relay.issue_signed_url(owner_id, descriptor.id, descriptor.mime_type)
        except ProviderError as e:
            logger.error(
                f"Failed to issue signed URL for message {message_id}: {e}",
                extra={"code": e.code},
            )
            raise RefreshError("url_generation_failed", "Failed to generate media URL", 502)

        if media_url is None:
            raise RefreshError("media_not_found", "Media not found in storage", 404)

        refreshed_at = utcnow()
        descriptor.mark_refreshed(key, media_url, refreshed_at)

        try:
            self.repo.update_media_descriptor(message, descriptor.to_stored())
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Failed to store refreshed URL for message {message_id}: {e}",
                exc_info=True,
            )

        logger.info("Refreshed media URL", extra={"message_id": message_id})
        return RefreshResult(message_id=message_id, media_url=media_url, refreshed_at=refreshed_at)
