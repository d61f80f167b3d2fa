"""
Read-side, media and send routes.

Callers are tenant users authenticated upstream; the requester id is the
tenant id.
"""

import logging

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from inboxcore.db import get_db

from whatsapp_inbox.contracts.payloads import (
    ContactView,
    ConversationSummary,
    ErrorResponse,
    MarkReadRequest,
    MarkReadResponse,
    MediaSendResult,
    MessageView,
    RefreshUrlRequest,
    RefreshUrlResponse,
    SendMediaResponse,
    SendMessageRequest,
    SendMessageResponse,
    UpdateNameRequest,
    UpdateNameResponse,
)
from whatsapp_inbox.persistence.repo import InboxRepository
from whatsapp_inbox.service.media_refresh import MediaRefreshService, RefreshError
from whatsapp_inbox.service.outbound_sender import OutboundSender, SendError
from whatsapp_inbox.storage.object_relay import ObjectRelay

from inbox_webhook.deps import get_object_relay, get_outbound_sender, get_requester_id

logger = logging.getLogger(__name__)

router = APIRouter()

CUSTOM_NAME_MAX_LENGTH = 100


def error_response(error: RefreshError | SendError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=ErrorResponse(error=error.reason, message=error.message).model_dump(),
    )


@router.post(
    "/media/refresh-url",
    response_model=RefreshUrlResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def refresh_media_url(
    body: RefreshUrlRequest,
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
    relay: ObjectRelay = Depends(get_object_relay),
):
    """Issue a new signed URL for a message's stored media."""
    service = MediaRefreshService(db, relay)
    try:
        result = await service.refresh(body.message_id, requester_id)
    except RefreshError as e:
        return error_response(e)

    return RefreshUrlResponse(
        message_id=result.message_id,
        media_url=result.media_url,
        refreshed_at=result.refreshed_at,
    )


@router.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
):
    """Latest message and unread count per counterparty."""
    return InboxRepository(db).list_conversations(requester_id)


@router.get("/messages", response_model=list[MessageView])
async def list_messages(
    conversation_id: str = Query(..., alias="conversationId", min_length=1),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
):
    """One page of a conversation in chronological order."""
    messages = InboxRepository(db).list_messages(requester_id, conversation_id, limit, offset)
    return [
        MessageView(
            id=m.id,
            sender_id=m.sender_id,
            receiver_id=m.receiver_id,
            content=m.content,
            timestamp=m.timestamp,
            is_sent_by_me=m.sender_id == requester_id,
            is_read=m.is_read,
            read_at=m.read_at,
            message_type=m.message_type,
            media_data=m.media_data if isinstance(m.media_data, dict) else None,
        )
        for m in messages
    ]


@router.post("/messages/mark-read", response_model=MarkReadResponse)
async def mark_read(
    body: MarkReadRequest,
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
):
    """Mark a conversation's inbound messages as read."""
    updated = InboxRepository(db).mark_conversation_read(requester_id, body.conversation_id)
    db.commit()
    return MarkReadResponse(updated=updated)


@router.post(
    "/messages/send",
    response_model=SendMessageResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def send_message(
    body: SendMessageRequest,
    requester_id: str = Depends(get_requester_id),
    sender: OutboundSender = Depends(get_outbound_sender),
):
    """Send a text message to a counterparty and record it."""
    try:
        sent = await sender.send_text(requester_id, body.to, body.message)
    except SendError as e:
        return error_response(e)

    return SendMessageResponse(message_id=sent.message_id, timestamp=sent.timestamp, stored=sent.stored)


@router.post(
    "/messages/send-media",
    response_model=SendMediaResponse,
    responses={400: {"model": ErrorResponse}},
)
async def send_media(
    to: str = Form(...),
    files: list[UploadFile] = File(...),
    captions: list[str] = Form([]),
    requester_id: str = Depends(get_requester_id),
    sender: OutboundSender = Depends(get_outbound_sender),
):
    """
    Send one or more files. Captions pair with files by position.

    Each file is sent independently; a failed file does not stop the rest.
    """
    results = []
    for index, upload in enumerate(files):
        caption = captions[index] if index < len(captions) else None
        try:
            sent = await sender.send_media(
                requester_id,
                to,
                await upload.read(),
                upload.filename,
                upload.content_type,
                caption=caption,
            )
        except SendError as e:
            if e.reason in ("invalid_recipient", "not_configured"):
                return error_response(e)
            results.append(MediaSendResult(filename=upload.filename, success=False, error=e.message))
            continue

        results.append(MediaSendResult(
            filename=upload.filename,
            success=True,
            message_id=sent.message_id,
            media_type=sent.message_type,
            relay_status=sent.relay_status,
        ))

    success_count = sum(1 for r in results if r.success)
    return SendMediaResponse(
        success=success_count > 0,
        total_files=len(results),
        success_count=success_count,
        failure_count=len(results) - success_count,
        results=results,
    )


@router.post(
    "/contacts/update-name",
    response_model=UpdateNameResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_contact_name(
    body: UpdateNameRequest,
    requester_id: str = Depends(get_requester_id),
    db: Session = Depends(get_db),
):
    """Set or clear the custom display name of a counterparty."""
    if not body.contact_id:
        return error_response(SendError("invalid_request", "Contact ID is required"))

    custom_name = (body.custom_name or "").strip()
    if len(custom_name) > CUSTOM_NAME_MAX_LENGTH:
        return error_response(
            SendError("invalid_request", f"Custom name must be {CUSTOM_NAME_MAX_LENGTH} characters or less")
        )

    # Only counterparties the requester has talked to can be renamed
    repo = InboxRepository(db)
    contact = None
    if repo.has_conversation(requester_id, body.contact_id):
        contact = repo.set_custom_name(body.contact_id, custom_name)
    if contact is None:
        return error_response(SendError("not_found", "Contact not found", status_code=404))

    db.commit()
    logger.info("Updated contact name", extra={"contact_id": contact.id, "tenant_id": requester_id})
    return UpdateNameResponse(
        contact=ContactView(
            id=contact.id,
            name=contact.name,
            custom_name=contact.custom_name,
            whatsapp_name=contact.whatsapp_name,
            last_active=contact.last_active,
        )
    )
