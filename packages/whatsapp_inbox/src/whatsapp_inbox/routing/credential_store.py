"""
Credential Store

Access to per-tenant WhatsApp credentials. Each request builds its own store
over its own session; nothing is cached across requests.
"""

import logging
import secrets

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from whatsapp_inbox.persistence.models import TenantCredentials
from whatsapp_inbox.persistence.repo import InboxRepository
from whatsapp_inbox.providers.meta_cloud.client import DEFAULT_API_VERSION

logger = logging.getLogger(__name__)

WEBHOOK_TOKEN_BYTES = 32


def generate_webhook_token() -> str:
    """New webhook path secret: 64 hex characters from the OS CSPRNG."""
    return secrets.token_hex(WEBHOOK_TOKEN_BYTES)


class CredentialStore:
    """
    Reads and writes TenantCredentials.

    Access tokens are Fernet-encrypted at rest when an encryption key is set;
    without one they are stored as given (development only).
    """

    def __init__(self, db: Session, encryption_key: str | None = None):
        self.db = db
        self.repo = InboxRepository(db)
        self._fernet = Fernet(encryption_key.encode()) if encryption_key else None

    # =========================================================================
    # Lookup
    # =========================================================================

    def get(self, tenant_id: str) -> TenantCredentials | None:
        return self.repo.get_credentials(tenant_id)

    def find_by_webhook_token(self, webhook_token: str) -> TenantCredentials | None:
        return self.repo.get_credentials_by_webhook_token(webhook_token)

    def get_access_token(self, credentials: TenantCredentials) -> str | None:
        """
        Decrypted access token, None if missing or unreadable.
        """
        if not credentials.access_token_encrypted:
            return None

        if self._fernet is None:
            return credentials.access_token_encrypted

        try:
            return self._fernet.decrypt(credentials.access_token_encrypted.encode()).decode()
        except InvalidToken:
            logger.error(
                "Failed to decrypt access token",
                extra={"tenant_id": credentials.tenant_id},
            )
            return None

    def encrypt_access_token(self, access_token: str) -> str:
        if self._fernet is None:
            return access_token
        return self._fernet.encrypt(access_token.encode()).decode()

    # =========================================================================
    # Mutations
    # =========================================================================

    def mark_verified(self, credentials: TenantCredentials) -> None:
        """Flip webhook_verified on. No write when already verified."""
        if credentials.webhook_verified:
            return
        credentials.webhook_verified = True
        self.db.flush()

    def create(
        self,
        tenant_id: str,
        verify_token: str,
        access_token: str | None = None,
        phone_number_id: str | None = None,
        business_account_id: str | None = None,
        phone_number: str | None = None,
        api_version: str | None = None,
    ) -> TenantCredentials:
        """Onboard a tenant with a freshly generated webhook token."""
        credentials = TenantCredentials(
            tenant_id=tenant_id,
            webhook_token=generate_webhook_token(),
            verify_token=verify_token,
            phone_number_id=phone_number_id,
            business_account_id=business_account_id,
            phone_number=phone_number,
            api_version=api_version or DEFAULT_API_VERSION,
            webhook_verified=False,
        )
        if access_token:
            credentials.access_token_encrypted = self.encrypt_access_token(access_token)
            credentials.access_token_added = True
        return self.repo.add_credentials(credentials)

    def update(
        self,
        credentials: TenantCredentials,
        access_token: str | None = None,
        verify_token: str | None = None,
        phone_number_id: str | None = None,
        business_account_id: str | None = None,
        phone_number: str | None = None,
        api_version: str | None = None,
    ) -> TenantCredentials:
        """
        Update mutable credential fields. The webhook token is never touched.

        Changing the verify token resets verification since the provider must
        repeat the handshake with the new value.
        """
        if access_token:
            credentials.access_token_encrypted = self.encrypt_access_token(access_token)
            credentials.access_token_added = True
        if verify_token and verify_token != credentials.verify_token:
            credentials.verify_token = verify_token
            credentials.webhook_verified = False
        if phone_number_id:
            credentials.phone_number_id = phone_number_id
        if business_account_id:
            credentials.business_account_id = business_account_id
        if phone_number:
            credentials.phone_number = phone_number
        if api_version:
            credentials.api_version = api_version
        self.db.flush()
        return credentials

    def rotate_webhook_token(self, credentials: TenantCredentials) -> str:
        """
        Issue a new webhook token. The provider must be reconfigured with the
        new callback URL, so verification is reset.
        """
        credentials.webhook_token = generate_webhook_token()
        credentials.webhook_verified = False
        self.db.flush()
        logger.warning(
            "Webhook token rotated",
            extra={"tenant_id": credentials.tenant_id},
        )
        return credentials.webhook_token
