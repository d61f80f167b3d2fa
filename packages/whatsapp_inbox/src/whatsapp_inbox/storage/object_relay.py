"""
Object Relay

Copies provider-hosted media into S3, stores copies of outbound uploads, and
issues time-limited signed read URLs.

Objects live at ``{owner_id}/{asset_id}.{ext}`` where the owner is the
conversation counterparty, so all media of one counterparty shares a prefix.
boto3 calls are blocking and run in a worker thread.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from inboxcore.settings import Settings
from whatsapp_inbox.providers.base import ProviderError
from whatsapp_inbox.providers.meta_cloud.client import MetaCloudClient
from whatsapp_inbox.storage.mime import extension_for

logger = logging.getLogger(__name__)

ASSET_ID_PATTERN = re.compile(r"^\d+$")
OWNER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_+\-]+$")

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class RelayError(ProviderError):
    """Media could not be relayed or a signed URL could not be issued."""


@dataclass(frozen=True)
class RelayResult:
    storage_key: str
    signed_url: str
    uploaded_at: datetime


class ObjectRelay:
    """
    Fetch-and-store for WhatsApp media.

    Args:
        s3_client: boto3 S3 client, None when storage is not configured
        bucket: target bucket
        media_client: client used to download from the provider
        url_ttl_seconds: lifetime of issued signed URLs
    """

    def __init__(
        self,
        s3_client,
        bucket: str,
        media_client: MetaCloudClient,
        url_ttl_seconds: int = 86400,
    ):
        self.s3 = s3_client
        self.bucket = bucket
        self.media_client = media_client
        self.url_ttl_seconds = url_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings, media_client: MetaCloudClient) -> "ObjectRelay":
        """Build a relay from MEDIA_BUCKET / AWS_* settings."""
        s3_client = None
        if settings.MEDIA_BUCKET:
            s3_client = boto3.client(
                "s3",
                region_name=settings.AWS_REGION,
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                endpoint_url=settings.S3_ENDPOINT_URL,
                config=Config(signature_version="s3v4"),
            )
        return cls(
            s3_client,
            settings.MEDIA_BUCKET,
            media_client,
            url_ttl_seconds=settings.SIGNED_URL_TTL_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return self.s3 is not None and bool(self.bucket)

    # =========================================================================
    # Keys
    # =========================================================================

    @staticmethod
    def validate_asset_id(asset_id: str | None) -> str:
        """
        Check a provider media id before it is used in a URL or storage key.

        Raises:
            RelayError: the id is missing or not numeric
        """
        if not asset_id or not ASSET_ID_PATTERN.match(asset_id):
            raise RelayError(
                f"Invalid media ID format: {asset_id!r}",
                code="INVALID_ASSET_ID",
                details={"asset_id": asset_id},
            )
        return asset_id

    @classmethod
    def storage_key(cls, owner_id: str, asset_id: str, mime_type: str | None) -> str:
        cls.validate_asset_id(asset_id)
        if not owner_id or not OWNER_ID_PATTERN.match(owner_id):
            raise RelayError(
                f"Invalid owner id: {owner_id!r}",
                code="INVALID_OWNER_ID",
                details={"owner_id": owner_id},
            )
        return f"{owner_id}/{asset_id}.{extension_for(mime_type)}"

    def _require_storage(self) -> None:
        if not self.configured:
            raise RelayError("Media storage is not configured", code="STORAGE_NOT_CONFIGURED")

    # =========================================================================
    # Relay
    # =========================================================================

    async def relay_from_url(
        self,
        source_url: str,
        owner_id: str,
        asset_id: str,
        mime_type: str,
        auth_token: str,
    ) -> RelayResult:
        """
        Download ``source_url`` and store it under the deterministic key.

        Nothing is written unless the download succeeded.

        Raises:
            RelayError: invalid ids, storage not configured, download or upload failure
        """
        self.storage_key(owner_id, asset_id, mime_type)
        self._require_storage()

        try:
            content, _content_type = await self.media_client.download(source_url, auth_token)
        except ProviderError as e:
            raise RelayError(
                f"Failed to download media: {e}",
                code="FETCH_FAILED",
                details={"asset_id": asset_id, "cause": e.code},
                retryable=e.retryable,
            ) from e

        return await self.store_object(owner_id, asset_id, mime_type, content)

    async def store_object(
        self,
        owner_id: str,
        asset_id: str,
        mime_type: str,
        content: bytes,
    ) -> RelayResult:
        """
        Write bytes already in hand (outbound uploads) under the deterministic key.

        Raises:
            RelayError: invalid ids, storage not configured, upload failure
        """
        key = self.storage_key(owner_id, asset_id, mime_type)
        self._require_storage()

        uploaded_at = datetime.now(timezone.utc)
        try:
            await asyncio.to_thread(
                self.s3.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=mime_type,
                Metadata={
                    "whatsapp-media-id": asset_id,
                    "sender-id": owner_id,
                    "uploaded-at": uploaded_at.isoformat(),
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise RelayError(
                f"Failed to upload media: {e}",
                code="UPLOAD_FAILED",
                details={"key": key},
                retryable=True,
            ) from e

        logger.info(
            "Stored media in object storage",
            extra={"key": key, "size": len(content), "mime_type": mime_type},
        )

        return RelayResult(
            storage_key=key,
            signed_url=self._presign(key),
            uploaded_at=uploaded_at,
        )

    # =========================================================================
    # Signed URLs
    # =========================================================================

    def _presign(self, key: str) -> str:
        try:
            return self.s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.url_ttl_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise RelayError(f"Failed to sign URL: {e}", code="SIGN_FAILED") from e

    async def object_exists(self, key: str) -> bool:
        """HEAD the object. Errors other than not-found are raised as RelayError."""
        self._require_storage()
        try:
            await asyncio.to_thread(self.s3.head_object, Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in NOT_FOUND_CODES:
                return False
            raise RelayError(f"Failed to check object: {e}", code="HEAD_FAILED") from e
        except BotoCoreError as e:
            raise RelayError(f"Failed to check object: {e}", code="HEAD_FAILED") from e

    async def issue_signed_url(
        self,
        owner_id: str,
        asset_id: str,
        mime_type: str | None,
        verify: bool = True,
    ) -> str | None:
        """
        Fresh signed URL for an already stored object.

        Does not contact the provider.

        Returns:
            The URL, or None when ``verify`` is set and the object is missing
        """
        key = self.storage_key(owner_id, asset_id, mime_type)
        self._require_storage()

        if verify and not await self.object_exists(key):
            logger.warning("Stored media object not found", extra={"key": key})
            return None

        return self._presign(key)
