"""
Pytest fixtures for inbox tests.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("INBOX_DISPATCH_MODE", "inline")
os.environ.setdefault("LOG_FORMAT", "text")

import boto3
import httpx
import pytest
from botocore.config import Config
from botocore.stub import Stubber
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from whatsapp_inbox.persistence.models import InboxBase, TenantCredentials
from whatsapp_inbox.providers.meta_cloud.client import MetaCloudClient
from whatsapp_inbox.storage.object_relay import ObjectRelay

from inbox_factories import (
    PHONE_NUMBER_ID,
    TENANT_ID,
    TEST_BUCKET,
    WEBHOOK_TOKEN,
    GraphApiMock,
)


@pytest.fixture
def db():
    """In-memory SQLite session with the inbox tables."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    InboxBase.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def tenant(db):
    """A verified tenant with a plain (unencrypted) access token."""
    credentials = TenantCredentials(
        tenant_id=TENANT_ID,
        webhook_token=WEBHOOK_TOKEN,
        verify_token="verify-me",
        webhook_verified=True,
        phone_number_id=PHONE_NUMBER_ID,
        business_account_id="WABA_1",
        access_token_encrypted="EAAG-test-token",
        access_token_added=True,
        api_version="v23.0",
    )
    db.add(credentials)
    db.commit()
    return credentials


@pytest.fixture
def s3():
    """boto3 S3 client with dummy credentials."""
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        config=Config(signature_version="s3v4"),
    )


@pytest.fixture
def s3_stub(s3):
    """Stubber over the S3 client; API calls must be queued by the test."""
    with Stubber(s3) as stubber:
        yield stubber


@pytest.fixture
def graph():
    return GraphApiMock(media={"123456": (b"\xff\xd8jpeg-bytes", "image/jpeg")})


@pytest.fixture
def media_client(graph):
    return MetaCloudClient(
        base_url="https://graph.test",
        timeout=5.0,
        transport=httpx.MockTransport(graph),
    )


@pytest.fixture
def relay(s3, media_client):
    return ObjectRelay(s3, TEST_BUCKET, media_client, url_ttl_seconds=3600)
