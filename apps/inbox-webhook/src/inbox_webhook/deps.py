"""FastAPI dependencies shared by the webhook and read-side routes."""

import functools

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from inboxcore.db import get_db, get_sessionmaker
from inboxcore.redis import get_redis_client
from inboxcore.settings import Settings, get_settings

from whatsapp_inbox.providers.meta_cloud.client import MetaCloudClient
from whatsapp_inbox.routing.credential_store import CredentialStore
from whatsapp_inbox.service.outbound_sender import OutboundSender
from whatsapp_inbox.storage.object_relay import ObjectRelay
from whatsapp_inbox.streams.producer import InboxStreamProducer


def get_session_factory():
    """Session factory for work that outlives the request (background tasks)."""
    return get_sessionmaker()


def get_credential_store(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CredentialStore:
    """A fresh credential store per request."""
    return CredentialStore(db, settings.WHATSAPP_ENCRYPTION_KEY or None)


@functools.lru_cache()
def get_graph_client() -> MetaCloudClient:
    settings = get_settings()
    return MetaCloudClient(
        base_url=settings.GRAPH_API_BASE_URL,
        timeout=settings.MEDIA_FETCH_TIMEOUT,
    )


@functools.lru_cache()
def get_object_relay() -> ObjectRelay:
    return ObjectRelay.from_settings(get_settings(), get_graph_client())


def get_outbound_sender(
    store: CredentialStore = Depends(get_credential_store),
    relay: ObjectRelay = Depends(get_object_relay),
    client: MetaCloudClient = Depends(get_graph_client),
) -> OutboundSender:
    return OutboundSender(store.db, store, relay, client)


def get_stream_producer() -> InboxStreamProducer:
    return InboxStreamProducer(get_redis_client())


async def get_requester_id(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
) -> str:
    """
    Authenticated user id, set by the auth proxy in front of this service.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id
