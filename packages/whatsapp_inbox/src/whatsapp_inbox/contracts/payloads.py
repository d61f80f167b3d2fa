"""
Inbox Payload Models

Pydantic models for the stored media descriptor and the HTTP contracts of the
refresh, read-side and send endpoints.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MessageType(str, Enum):
    """Stored message types."""

    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"
    STICKER = "sticker"
    TEMPLATE = "template"


class RelayStatus(str, Enum):
    """Whether the media bytes made it into object storage."""

    UPLOADED = "uploaded"
    FAILED = "failed"
    PENDING = "pending"


class MediaDescriptor(BaseModel):
    """
    Media attached to a stored message.

    Serialized into the ``media_data`` JSON column. ``relay_status`` is
    ``uploaded`` exactly when ``storage_key`` is set; ``s3_uploaded`` mirrors it
    for readers of older rows.
    """

    model_config = ConfigDict(extra="ignore")

    type: str
    id: str | None = None
    mime_type: str | None = None
    sha256: str | None = None
    caption: str | None = None
    filename: str | None = None
    voice: bool | None = None

    relay_status: RelayStatus = RelayStatus.PENDING
    storage_key: str | None = None
    media_url: str | None = None
    s3_uploaded: bool = False
    upload_timestamp: datetime | None = None
    upload_error: str | None = None
    url_refreshed_at: datetime | None = None

    @classmethod
    def from_stored(cls, raw: Any) -> "MediaDescriptor":
        """
        Load a descriptor from the media_data column.

        Older rows hold the descriptor as a JSON string rather than an object.
        Raises ValueError when the value cannot be read as a descriptor.
        """
        if isinstance(raw, str):
            raw = json.loads(raw)
        if not isinstance(raw, dict):
            raise ValueError("media data is not an object")
        if "relay_status" not in raw:
            raw = {
                **raw,
                "relay_status": (
                    RelayStatus.UPLOADED.value if raw.get("s3_uploaded") else RelayStatus.PENDING.value
                ),
            }
        return cls.model_validate(raw)

    def to_stored(self) -> dict[str, Any]:
        """Serialize for the media_data column."""
        return self.model_dump(mode="json", exclude_none=True)

    def mark_uploaded(self, storage_key: str, media_url: str, at: datetime) -> None:
        self.relay_status = RelayStatus.UPLOADED
        self.storage_key = storage_key
        self.media_url = media_url
        self.s3_uploaded = True
        self.upload_timestamp = at
        self.upload_error = None

    def mark_failed(self, error: str) -> None:
        self.relay_status = RelayStatus.FAILED
        self.storage_key = None
        self.media_url = None
        self.s3_uploaded = False
        self.upload_error = error

    def mark_refreshed(self, storage_key: str, media_url: str, at: datetime) -> None:
        self.relay_status = RelayStatus.UPLOADED
        self.storage_key = storage_key
        self.media_url = media_url
        self.s3_uploaded = True
        self.url_refreshed_at = at
        self.upload_error = None


# =========================================================================
# HTTP contracts
# =========================================================================


class RefreshUrlRequest(BaseModel):
    """Body of POST /media/refresh-url."""

    message_id: str | None = Field(None, alias="messageId")

    model_config = ConfigDict(populate_by_name=True)


class RefreshUrlResponse(BaseModel):
    """Successful refresh."""

    success: bool = True
    message_id: str = Field(..., alias="messageId")
    media_url: str = Field(..., alias="mediaUrl")
    refreshed_at: datetime = Field(..., alias="refreshedAt")

    model_config = ConfigDict(populate_by_name=True)


class ErrorResponse(BaseModel):
    """Error body for user-facing endpoints."""

    error: str = Field(..., description="Machine-readable reason")
    message: str = Field(..., description="Human-readable message")


class MessageView(BaseModel):
    """One message as seen by the requesting tenant."""

    id: str
    sender_id: str
    receiver_id: str
    content: str
    timestamp: datetime
    is_sent_by_me: bool
    is_read: bool
    read_at: datetime | None = None
    message_type: str
    media_data: dict[str, Any] | None = None


class ConversationSummary(BaseModel):
    """Read-side aggregate for one counterparty."""

    counterparty_id: str
    name: str
    custom_name: str | None = None
    whatsapp_name: str | None = None
    last_message: str
    last_message_type: str
    last_message_time: datetime
    last_message_sender: str
    unread_count: int = 0


class MarkReadRequest(BaseModel):
    """Body of POST /messages/mark-read."""

    conversation_id: str = Field(..., alias="conversationId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class MarkReadResponse(BaseModel):
    success: bool = True
    updated: int


class SendMessageRequest(BaseModel):
    """Body of POST /messages/send."""

    to: str | None = None
    message: str | None = None


class SendMessageResponse(BaseModel):
    success: bool = True
    message_id: str = Field(..., alias="messageId")
    timestamp: datetime
    stored: bool = True

    model_config = ConfigDict(populate_by_name=True)


class MediaSendResult(BaseModel):
    """Outcome for one file of a media send."""

    filename: str | None = None
    success: bool
    message_id: str | None = Field(None, alias="messageId")
    media_type: str | None = Field(None, alias="mediaType")
    relay_status: str | None = Field(None, alias="relayStatus")
    error: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class SendMediaResponse(BaseModel):
    success: bool
    total_files: int = Field(..., alias="totalFiles")
    success_count: int = Field(..., alias="successCount")
    failure_count: int = Field(..., alias="failureCount")
    results: list[MediaSendResult]

    model_config = ConfigDict(populate_by_name=True)


class UpdateNameRequest(BaseModel):
    """Body of POST /contacts/update-name. An empty name clears it."""

    contact_id: str | None = Field(None, alias="contactId")
    custom_name: str | None = Field(None, alias="customName")

    model_config = ConfigDict(populate_by_name=True)


class ContactView(BaseModel):
    id: str
    name: str
    custom_name: str | None = None
    whatsapp_name: str | None = None
    last_active: datetime | None = None


class UpdateNameResponse(BaseModel):
    success: bool = True
    contact: ContactView
