"""
Service tests for media refresh and the read-side routes.
"""

from datetime import datetime, timedelta, timezone

import pytest

from whatsapp_inbox.persistence.models import Contact, Message

from inbox_factories import SENDER, TENANT_ID, TEST_BUCKET

AUTH = {"X-User-Id": TENANT_ID}
BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def conversation(db):
    db.add_all([
        Message(
            id="wamid.1",
            sender_id=SENDER,
            receiver_id=TENANT_ID,
            content="Bom dia",
            timestamp=BASE_TIME,
            message_type="text",
        ),
        Message(
            id="wamid.2",
            sender_id=TENANT_ID,
            receiver_id=SENDER,
            content="Olá!",
            timestamp=BASE_TIME + timedelta(minutes=1),
            is_sent_by_me=True,
            message_type="text",
        ),
        Message(
            id="wamid.3",
            sender_id=SENDER,
            receiver_id=TENANT_ID,
            content="[Image]",
            timestamp=BASE_TIME + timedelta(minutes=2),
            message_type="image",
            media_data={
                "type": "image",
                "id": "123456",
                "mime_type": "image/jpeg",
                "relay_status": "uploaded",
                "storage_key": f"{SENDER}/123456.jpg",
                "media_url": "https://expired.example/old",
                "s3_uploaded": True,
            },
        ),
        Contact(id=SENDER, name="John Doe", whatsapp_name="John Doe"),
    ])
    db.commit()


class TestRefreshEndpoint:

    def test_success(self, client, conversation, s3_stub):
        s3_stub.add_response("head_object", {}, {"Bucket": TEST_BUCKET, "Key": f"{SENDER}/123456.jpg"})

        response = client.post("/media/refresh-url", json={"messageId": "wamid.3"}, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["messageId"] == "wamid.3"
        assert f"{SENDER}/123456.jpg" in body["mediaUrl"]
        assert "refreshedAt" in body

    def test_requires_user(self, client, conversation):
        response = client.post("/media/refresh-url", json={"messageId": "wamid.3"})
        assert response.status_code == 401

    def test_missing_message_id(self, client):
        response = client.post("/media/refresh-url", json={}, headers=AUTH)

        assert response.status_code == 400
        assert response.json() == {"error": "invalid_request", "message": "Message ID is required"}

    def test_foreign_requester(self, client, conversation):
        response = client.post(
            "/media/refresh-url", json={"messageId": "wamid.3"}, headers={"X-User-Id": "intruder"}
        )

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_text_message_has_no_media(self, client, conversation):
        response = client.post("/media/refresh-url", json={"messageId": "wamid.1"}, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"] == "no_media"

    def test_object_gone(self, client, conversation, s3_stub):
        s3_stub.add_client_error("head_object", service_error_code="NoSuchKey", http_status_code=404)

        response = client.post("/media/refresh-url", json={"messageId": "wamid.3"}, headers=AUTH)

        assert response.status_code == 404
        assert response.json()["error"] == "media_not_found"


class TestReadRoutes:

    def test_conversations(self, client, conversation):
        response = client.get("/conversations", headers=AUTH)

        assert response.status_code == 200
        [summary] = response.json()
        assert summary["counterparty_id"] == SENDER
        assert summary["name"] == "John Doe"
        assert summary["last_message"] == "[Image]"
        assert summary["last_message_type"] == "image"
        assert summary["unread_count"] == 2

    def test_messages(self, client, conversation):
        response = client.get("/messages", params={"conversationId": SENDER}, headers=AUTH)

        assert response.status_code == 200
        messages = response.json()
        assert [m["id"] for m in messages] == ["wamid.1", "wamid.2", "wamid.3"]
        assert [m["is_sent_by_me"] for m in messages] == [False, True, False]
        assert messages[2]["media_data"]["id"] == "123456"

    def test_messages_validation(self, client):
        assert client.get("/messages", headers=AUTH).status_code == 422
        assert client.get(
            "/messages", params={"conversationId": SENDER, "limit": 0}, headers=AUTH
        ).status_code == 422

    def test_mark_read(self, client, conversation):
        response = client.post("/messages/mark-read", json={"conversationId": SENDER}, headers=AUTH)

        assert response.json() == {"success": True, "updated": 2}
        assert client.get("/conversations", headers=AUTH).json()[0]["unread_count"] == 0

    def test_requires_user(self, client):
        assert client.get("/conversations").status_code == 401
