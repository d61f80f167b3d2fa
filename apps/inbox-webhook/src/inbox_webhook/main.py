"""
Inbox Webhook Service

FastAPI app receiving WhatsApp Cloud API webhooks for many tenants.

Each tenant has its own callback URL, ``/webhook/{token}``, where the token
is the tenant's random webhook secret.

Responsibilities:
- Verification handshake (GET)
- Accept deliveries (POST), route them to the tenant and hand them off
  to the worker (stream mode) or a background task (inline mode)
- Always answer deliveries with 200 once the token was read, so the
  provider does not retry processing failures
- Media URL refresh and read-side routes (see api.py)
"""

import json
import logging

import redis
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import PlainTextResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from inboxcore.db import get_db
from inboxcore.logging import setup_logging
from inboxcore.redis import get_redis_client
from inboxcore.settings import Settings, get_settings

from whatsapp_inbox.contracts.envelope import InboxEnvelope
from whatsapp_inbox.contracts.event_types import InboxEventType
from whatsapp_inbox.providers.meta_cloud.client import MetaCloudClient
from whatsapp_inbox.providers.meta_cloud.webhook import parse_meta_webhook, validate_signature
from whatsapp_inbox.routing.credential_store import CredentialStore
from whatsapp_inbox.routing.tenant_resolver import TenantResolver, is_parseable_token, mask_token
from whatsapp_inbox.service.inbound_handler import InboundHandler
from whatsapp_inbox.storage.object_relay import ObjectRelay
from whatsapp_inbox.streams.groups import ensure_inbox_streams
from whatsapp_inbox.streams.producer import InboxStreamProducer

from inbox_webhook.api import router as api_router
from inbox_webhook.deps import (
    get_credential_store,
    get_graph_client,
    get_object_relay,
    get_session_factory,
    get_stream_producer,
)

setup_logging()
logger = logging.getLogger(__name__)

DISPATCH_STREAM = "stream"
DISPATCH_INLINE = "inline"

app = FastAPI(
    title="WhatsApp Inbox Webhook",
    description="Receives WhatsApp webhooks per tenant and relays media to object storage",
    version="1.0.0",
)
app.include_router(api_router)


def acknowledge() -> PlainTextResponse:
    return PlainTextResponse("OK", status_code=200)


@app.on_event("startup")
async def startup():
    """Ensure Redis streams exist when deliveries are handed to the worker."""
    settings = get_settings()
    if settings.INBOX_DISPATCH_MODE != DISPATCH_STREAM:
        logger.info("Inbox webhook started (inline dispatch)")
        return
    try:
        ensure_inbox_streams(get_redis_client())
        logger.info("Inbox webhook started (stream dispatch)")
    except redis.RedisError as e:
        logger.error(f"Failed to initialize streams: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    await get_graph_client().close()


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "healthy", "service": "inbox-webhook"}


@app.get("/health/ready")
async def ready(db: Session = Depends(get_db)):
    """Readiness check: the database answers."""
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {"status": "ready"}


@app.get("/webhook/{token}")
async def verify_webhook(
    token: str,
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
    store: CredentialStore = Depends(get_credential_store),
):
    """
    Handle Meta webhook verification for one tenant.

    Meta sends hub.mode, hub.verify_token and hub.challenge; we echo the
    challenge when the verify token matches the tenant's.
    """
    logger.info(
        "Webhook verification request",
        extra={
            "token": mask_token(token),
            "mode": hub_mode,
            "token_received": bool(hub_verify_token),
        },
    )

    challenge = TenantResolver(store).verify(token, hub_mode, hub_verify_token, hub_challenge)
    if challenge is None:
        raise HTTPException(status_code=403, detail="Verification failed")

    store.db.commit()
    return Response(content=challenge, media_type="text/plain")


@app.post("/webhook/{token}")
async def receive_webhook(
    token: str,
    request: Request,
    background_tasks: BackgroundTasks,
    store: CredentialStore = Depends(get_credential_store),
    settings: Settings = Depends(get_settings),
    session_factory=Depends(get_session_factory),
    relay: ObjectRelay = Depends(get_object_relay),
    media_client: MetaCloudClient = Depends(get_graph_client),
    producer: InboxStreamProducer = Depends(get_stream_producer),
):
    """
    Receive a delivery for one tenant.

    Flow:
    1. Reject tokens that cannot be webhook tokens (403)
    2. Validate the signature when an app secret is configured
    3. Resolve the tenant, drop changes for other phone numbers
    4. Publish accepted changes to the inbound stream (or process inline)
    5. Return 200 in every case
    """
    if not is_parseable_token(token):
        raise HTTPException(status_code=403, detail="Forbidden")

    try:
        body = await request.body()

        if settings.WHATSAPP_APP_SECRET:
            signature = request.headers.get("X-Hub-Signature-256", "")
            if not validate_signature(body, signature, settings.WHATSAPP_APP_SECRET):
                logger.warning("Invalid webhook signature", extra={"token": mask_token(token)})
                return acknowledge()

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Invalid JSON payload", extra={"token": mask_token(token)})
            return acknowledge()

        resolver = TenantResolver(store)
        credentials = resolver.resolve(token)
        if credentials is None:
            return acknowledge()

        batches = [
            batch
            for batch in parse_meta_webhook(payload)
            if batch.messages and resolver.accepts_routing_id(credentials, batch.routing_id)
        ]
        if not batches:
            logger.debug("Delivery has no messages to process", extra={"tenant_id": credentials.tenant_id})
            return acknowledge()

        tenant_id = credentials.tenant_id

        if settings.INBOX_DISPATCH_MODE == DISPATCH_STREAM:
            try:
                for batch in batches:
                    producer.publish_inbound(tenant_id, batch)
                logger.info(
                    "Published inbound delivery",
                    extra={"tenant_id": tenant_id, "changes": len(batches)},
                )
                return acknowledge()
            except redis.RedisError as e:
                logger.error(f"Failed to publish delivery, processing inline: {e}")

        payloads = [batch.to_payload() for batch in batches]

        background_tasks.add_task(
            process_inline,
            session_factory,
            relay,
            media_client,
            settings.WHATSAPP_ENCRYPTION_KEY or None,
            tenant_id,
            payloads,
        )

    except Exception as e:
        logger.error(f"Error processing webhook: {e}", exc_info=True)

    return acknowledge()


async def process_inline(
    session_factory,
    relay: ObjectRelay,
    media_client: MetaCloudClient,
    encryption_key: str | None,
    tenant_id: str,
    payloads: list[dict],
) -> None:
    """Run the ingestion pipeline after the response has been sent."""
    db = session_factory()
    try:
        handler = InboundHandler(db, CredentialStore(db, encryption_key), relay, media_client)
        for payload in payloads:
            envelope = InboxEnvelope.create(
                event_type=InboxEventType.INBOUND_RECEIVED.value,
                tenant_id=tenant_id,
                payload=payload,
            )
            await handler.handle_envelope(envelope)
    except Exception as e:
        logger.error(f"Inline processing failed for tenant {tenant_id}: {e}", exc_info=True)
    finally:
        db.close()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8090)
