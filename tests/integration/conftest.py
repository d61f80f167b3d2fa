"""
Pytest configuration for service-level tests.

The webhook app runs in-process through FastAPI's TestClient with its
dependencies pointed at a temporary SQLite database, a stubbed S3 client,
a mocked Graph API and a mocked stream producer.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("INBOX_DISPATCH_MODE", "inline")
os.environ.setdefault("LOG_FORMAT", "text")

from unittest.mock import MagicMock

import boto3
import httpx
import pytest
from botocore.config import Config
from botocore.stub import Stubber
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from inboxcore.db import get_db
from inboxcore.settings import Settings, get_settings

from whatsapp_inbox.persistence.models import InboxBase, TenantCredentials
from whatsapp_inbox.providers.meta_cloud.client import MetaCloudClient
from whatsapp_inbox.storage.object_relay import ObjectRelay

from inbox_webhook.deps import (
    get_graph_client,
    get_object_relay,
    get_session_factory,
    get_stream_producer,
)
from inbox_webhook.main import app

from inbox_factories import (
    PHONE_NUMBER_ID,
    TENANT_ID,
    TEST_BUCKET,
    WEBHOOK_TOKEN,
    GraphApiMock,
)


@pytest.fixture
def session_factory(tmp_path):
    """Sessions on a throwaway SQLite file shared by requests and background tasks."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'inbox.db'}",
        connect_args={"check_same_thread": False},
    )
    InboxBase.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def tenant(db):
    credentials = TenantCredentials(
        tenant_id=TENANT_ID,
        webhook_token=WEBHOOK_TOKEN,
        verify_token="verify-me",
        webhook_verified=False,
        phone_number_id=PHONE_NUMBER_ID,
        access_token_encrypted="EAAG-test-token",
        access_token_added=True,
        api_version="v23.0",
    )
    db.add(credentials)
    db.commit()
    return credentials


@pytest.fixture
def settings():
    """Inline dispatch, no app secret. Tests mutate it before the request."""
    return Settings(
        DATABASE_URL="sqlite://",
        INBOX_DISPATCH_MODE="inline",
        WHATSAPP_APP_SECRET="",
        WHATSAPP_ENCRYPTION_KEY="",
        MEDIA_BUCKET=TEST_BUCKET,
    )


@pytest.fixture
def s3_stub():
    s3 = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        config=Config(signature_version="s3v4"),
    )
    with Stubber(s3) as stubber:
        yield stubber


@pytest.fixture
def graph():
    return GraphApiMock(media={"123456": (b"\xff\xd8jpeg-bytes", "image/jpeg")})


@pytest.fixture
def media_client(graph):
    return MetaCloudClient(
        base_url="https://graph.test",
        transport=httpx.MockTransport(graph),
    )


@pytest.fixture
def relay(s3_stub, media_client):
    return ObjectRelay(s3_stub.client, TEST_BUCKET, media_client, url_ttl_seconds=3600)


@pytest.fixture
def producer():
    return MagicMock()


@pytest.fixture
def client(session_factory, settings, relay, media_client, producer):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_object_relay] = lambda: relay
    app.dependency_overrides[get_graph_client] = lambda: media_client
    app.dependency_overrides[get_stream_producer] = lambda: producer

    yield TestClient(app)

    app.dependency_overrides.clear()
