"""
Inbound Message Handler

Processes accepted webhook changes for one tenant:
1. Loads the tenant's credentials
2. Upserts the counterparty contact (best effort)
3. Normalizes each message
4. Relays attached media into object storage
5. Persists the message once per provider message id

Every message is processed in its own transaction. A failure in one message
is logged and never stops the rest of the batch.
"""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whatsapp_inbox.contracts.envelope import InboxEnvelope
from whatsapp_inbox.contracts.payloads import MediaDescriptor
from whatsapp_inbox.persistence.models import TenantCredentials
from whatsapp_inbox.persistence.repo import InboxRepository
from whatsapp_inbox.providers.base import InboundBatch, InboundMessage, ProviderError
from whatsapp_inbox.providers.meta_cloud.client import DEFAULT_API_VERSION, MetaCloudClient
from whatsapp_inbox.providers.meta_cloud.webhook import parse_change_value
from whatsapp_inbox.routing.credential_store import CredentialStore
from whatsapp_inbox.service.normalizer import normalize
from whatsapp_inbox.storage.object_relay import ObjectRelay

logger = logging.getLogger(__name__)

NO_ACCESS_TOKEN_ERROR = "Media not relayed: no access token configured"
DEFAULT_MIME_TYPE = "application/octet-stream"


class InboundHandler:
    """
    Ingestion orchestrator.

    Args:
        db: Session used for all reads and writes
        store: Credential store over the same session
        relay: Object relay for media
        media_client: Graph API client resolving media ids to URLs
    """

    def __init__(
        self,
        db: Session,
        store: CredentialStore,
        relay: ObjectRelay,
        media_client: MetaCloudClient,
    ):
        self.db = db
        self.store = store
        self.repo = InboxRepository(db)
        self.relay = relay
        self.media_client = media_client

    async def handle_envelope(self, envelope: InboxEnvelope) -> dict[str, Any]:
        """
        Process an inbound envelope from the stream.

        The payload is a change value as produced by InboundBatch.to_payload().
        """
        credentials = self.store.get(envelope.tenant_id)
        if credentials is None:
            logger.warning(
                "Dropping inbound event for unknown tenant",
                extra={"tenant_id": envelope.tenant_id, "event_id": str(envelope.event_id)},
            )
            return {"status": "ignored", "reason": "unknown_tenant"}

        batch = parse_change_value(envelope.payload)
        return await self.process_batch(credentials, batch)

    async def process_batch(
        self,
        credentials: TenantCredentials,
        batch: InboundBatch,
    ) -> dict[str, Any]:
        """
        Process all messages of a batch sequentially.

        Returns:
            Summary with per-status counts and per-message results
        """
        access_token = self.store.get_access_token(credentials)
        results = []

        for message in batch.messages:
            try:
                result = await self.process_message(
                    credentials,
                    message,
                    contact_name=batch.contact_name_for(message.from_phone),
                    profile_name=batch.contacts.get(message.from_phone),
                    access_token=access_token,
                )
            except Exception as e:
                self.db.rollback()
                logger.error(
                    f"Failed to process message {message.message_id}: {e}",
                    exc_info=True,
                    extra={"tenant_id": credentials.tenant_id},
                )
                result = {"message_id": message.message_id, "status": "error", "error": str(e)}
            results.append(result)

        summary = {
            "tenant_id": credentials.tenant_id,
            "received": len(results),
            "stored": sum(1 for r in results if r["status"] == "stored"),
            "duplicates": sum(1 for r in results if r["status"] == "duplicate"),
            "failed": sum(1 for r in results if r["status"] == "error"),
            "results": results,
        }

        logger.info(
            "Processed inbound batch",
            extra={k: v for k, v in summary.items() if k != "results"},
        )
        return summary

    async def process_message(
        self,
        credentials: TenantCredentials,
        message: InboundMessage,
        contact_name: str,
        profile_name: str | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        """
        Process a single inbound message.

        Returns:
            Result dict with status "stored", "duplicate" or "error"
        """
        result: dict[str, Any] = {
            "message_id": message.message_id,
            "from": message.from_phone,
            "type": message.type_tag,
        }

        self._touch_contact(message, contact_name, profile_name)

        if self.repo.message_exists(message.message_id):
            logger.debug(f"Message {message.message_id} already stored, skipping")
            result["status"] = "duplicate"
            return result

        normalized = normalize(message)
        media = normalized.media

        if media is not None:
            if access_token:
                await self._relay_media(credentials, message, media, access_token)
            else:
                media.mark_failed(NO_ACCESS_TOKEN_ERROR)
            result["relay_status"] = media.relay_status.value

        try:
            created = self.repo.insert_message_if_absent(
                id=message.message_id,
                sender_id=message.from_phone,
                receiver_id=credentials.tenant_id,
                content=normalized.display_content,
                timestamp=message.timestamp,
                is_sent_by_me=False,
                is_read=False,
                message_type=normalized.message_type.value,
                media_data=media.to_stored() if media else None,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Failed to store message {message.message_id}: {e}",
                exc_info=True,
                extra={"tenant_id": credentials.tenant_id},
            )
            result["status"] = "error"
            result["error"] = str(e)
            return result

        result["status"] = "stored" if created else "duplicate"
        logger.info(
            f"{normalized.message_type.value} message {result['status']}",
            extra={
                "message_id": message.message_id,
                "tenant_id": credentials.tenant_id,
                "type": normalized.message_type.value,
            },
        )
        return result

    def _touch_contact(
        self,
        message: InboundMessage,
        contact_name: str,
        profile_name: str | None,
    ) -> None:
        """Upsert the sender. Failures are logged and do not block the message."""
        try:
            self.repo.upsert_contact(
                message.from_phone,
                contact_name,
                last_active=message.timestamp,
                whatsapp_name=profile_name,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(
                f"Failed to upsert contact {message.from_phone}: {e}",
                exc_info=True,
            )

    async def _relay_media(
        self,
        credentials: TenantCredentials,
        message: InboundMessage,
        media: MediaDescriptor,
        access_token: str,
    ) -> None:
        """
        Relay one media object and record the outcome on the descriptor.

        Any failure leaves the descriptor in the failed state with an error note.
        """
        try:
            asset_id = ObjectRelay.validate_asset_id(media.id)
            source_url = await self.media_client.get_media_url(
                asset_id,
                access_token,
                api_version=credentials.api_version or DEFAULT_API_VERSION,
            )
            relayed = await self.relay.relay_from_url(
                source_url,
                owner_id=message.from_phone,
                asset_id=asset_id,
                mime_type=media.mime_type or DEFAULT_MIME_TYPE,
                auth_token=access_token,
            )
        except ProviderError as e:
            logger.warning(
                f"Media relay failed for {media.id}: {e}",
                extra={"message_id": message.message_id, "code": e.code},
            )
            media.mark_failed(f"Failed to upload media: {e}")
            return
        except Exception as e:
            logger.error(
                f"Unexpected media relay error for {media.id}: {e}",
                exc_info=True,
                extra={"message_id": message.message_id},
            )
            media.mark_failed("Failed to upload media: unexpected error")
            return

        media.mark_uploaded(relayed.storage_key, relayed.signed_url, relayed.uploaded_at)
