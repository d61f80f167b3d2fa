"""
Inbound Message Model

Provider errors and the typed representation of one inbound WhatsApp message.

Message bodies form a closed union: every type tag the Cloud API can send maps
to exactly one ``InboundKind`` and one body class, and anything unknown becomes
an ``UnsupportedBody`` carrying the original tag.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


class ProviderError(Exception):
    """Error from the WhatsApp provider or a storage backend."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.retryable = retryable


class InboundKind(str, Enum):
    """Inbound message kinds handled by the pipeline."""

    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"
    STICKER = "sticker"
    UNSUPPORTED = "unsupported"

    @classmethod
    def from_tag(cls, type_tag: str) -> "InboundKind":
        try:
            return cls(type_tag)
        except ValueError:
            return cls.UNSUPPORTED


@dataclass(frozen=True)
class MediaRef:
    """Provider-side reference to an attached media object."""

    media_id: str | None = None
    mime_type: str | None = None
    sha256: str | None = None


@dataclass(frozen=True)
class TextBody:
    body: str = ""


@dataclass(frozen=True)
class ImageBody:
    media: MediaRef
    caption: str | None = None


@dataclass(frozen=True)
class DocumentBody:
    media: MediaRef
    filename: str | None = None
    caption: str | None = None


@dataclass(frozen=True)
class AudioBody:
    media: MediaRef
    voice: bool = False


@dataclass(frozen=True)
class VideoBody:
    media: MediaRef
    caption: str | None = None


@dataclass(frozen=True)
class StickerBody:
    media: MediaRef
    animated: bool = False


@dataclass(frozen=True)
class UnsupportedBody:
    type_tag: str


MessageBody = Union[
    TextBody, ImageBody, DocumentBody, AudioBody, VideoBody, StickerBody, UnsupportedBody
]

# Body class expected for each kind
BODY_TYPES: dict[InboundKind, type] = {
    InboundKind.TEXT: TextBody,
    InboundKind.IMAGE: ImageBody,
    InboundKind.DOCUMENT: DocumentBody,
    InboundKind.AUDIO: AudioBody,
    InboundKind.VIDEO: VideoBody,
    InboundKind.STICKER: StickerBody,
    InboundKind.UNSUPPORTED: UnsupportedBody,
}


@dataclass
class InboundMessage:
    """
    One message entry from a webhook delivery.

    ``message_id`` is assigned by the provider and is the idempotency key.
    """

    message_id: str
    from_phone: str
    timestamp: datetime
    kind: InboundKind
    body: MessageBody
    type_tag: str
    raw_payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        expected = BODY_TYPES[self.kind]
        if not isinstance(self.body, expected):
            raise TypeError(
                f"{self.kind.value} message needs {expected.__name__}, got {type(self.body).__name__}"
            )


@dataclass
class InboundBatch:
    """
    Messages and contact profiles from one webhook change.

    Attributes:
        routing_id: phone_number_id the change was delivered to
        business_account_id: WABA id of the entry, when present
        messages: parsed message entries
        contacts: wa_id -> profile name
        raw_value: the change value as received, replayable through the parser
    """

    routing_id: str | None
    business_account_id: str | None = None
    messages: list[InboundMessage] = field(default_factory=list)
    contacts: dict[str, str] = field(default_factory=dict)
    raw_value: dict[str, Any] = field(default_factory=dict)

    def contact_name_for(self, phone: str) -> str:
        """Profile name for a sender, falling back to the phone number."""
        return self.contacts.get(phone) or phone

    def to_payload(self) -> dict[str, Any]:
        """Change-value shaped payload for the inbound stream."""
        return {
            "metadata": {"phone_number_id": self.routing_id},
            "business_account_id": self.business_account_id,
            "messages": self.raw_value.get("messages", []),
            "contacts": self.raw_value.get("contacts", []),
        }
