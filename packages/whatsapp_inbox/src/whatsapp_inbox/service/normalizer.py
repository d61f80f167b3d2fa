"""
Message Normalizer

Maps an InboundMessage to what gets stored: display content, message type and
an optional media descriptor. Pure, no I/O, never raises for a well-formed
InboundMessage. Whether media is relayed is up to the caller.
"""

from dataclasses import dataclass

from whatsapp_inbox.contracts.payloads import MediaDescriptor, MessageType
from whatsapp_inbox.providers.base import (
    AudioBody,
    DocumentBody,
    ImageBody,
    InboundMessage,
    MediaRef,
    StickerBody,
    TextBody,
    UnsupportedBody,
    VideoBody,
)


@dataclass
class NormalizedContent:
    display_content: str
    message_type: MessageType
    media: MediaDescriptor | None = None


def _descriptor(kind: str, media: MediaRef, **extra) -> MediaDescriptor:
    return MediaDescriptor(
        type=kind,
        id=media.media_id,
        mime_type=media.mime_type,
        sha256=media.sha256,
        **extra,
    )


def normalize(message: InboundMessage) -> NormalizedContent:
    """
    Normalize one inbound message.

    | kind        | display content                          | media |
    |-------------|------------------------------------------|-------|
    | text        | body                                     | no    |
    | image       | caption or [Image]                       | yes   |
    | document    | [Document: <filename or Unknown>]        | yes   |
    | audio       | [Voice Message] / [Audio]                | yes   |
    | video       | caption or [Video]                       | yes   |
    | sticker     | [Sticker]                                | yes   |
    | unsupported | [Unsupported message type: <tag>]        | no    |

    Unsupported messages are stored as text since the stored type set is closed.
    """
    body = message.body

    if isinstance(body, TextBody):
        return NormalizedContent(body.body, MessageType.TEXT)

    if isinstance(body, ImageBody):
        return NormalizedContent(
            body.caption or "[Image]",
            MessageType.IMAGE,
            _descriptor("image", body.media, caption=body.caption),
        )

    if isinstance(body, DocumentBody):
        return NormalizedContent(
            f"[Document: {body.filename or 'Unknown'}]",
            MessageType.DOCUMENT,
            _descriptor("document", body.media, filename=body.filename, caption=body.caption),
        )

    if isinstance(body, AudioBody):
        return NormalizedContent(
            "[Voice Message]" if body.voice else "[Audio]",
            MessageType.AUDIO,
            _descriptor("audio", body.media, voice=body.voice),
        )

    if isinstance(body, VideoBody):
        return NormalizedContent(
            body.caption or "[Video]",
            MessageType.VIDEO,
            _descriptor("video", body.media, caption=body.caption),
        )

    if isinstance(body, StickerBody):
        return NormalizedContent(
            "[Sticker]",
            MessageType.STICKER,
            _descriptor("sticker", body.media),
        )

    if isinstance(body, UnsupportedBody):
        return NormalizedContent(
            f"[Unsupported message type: {body.type_tag}]",
            MessageType.TEXT,
        )

    # InboundMessage.__post_init__ pins body to the closed union
    raise TypeError(f"Unhandled message body: {type(body).__name__}")
