"""
Tenant Resolver

Maps the opaque ``{token}`` path segment of the webhook URL to a tenant and
decides whether a delivery may be processed for it.
"""

import hmac
import logging
import re

from whatsapp_inbox.persistence.models import TenantCredentials
from whatsapp_inbox.routing.credential_store import CredentialStore

logger = logging.getLogger(__name__)

HUB_MODE_SUBSCRIBE = "subscribe"

WEBHOOK_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,128}$")


def is_parseable_token(token: str | None) -> bool:
    """Whether a path segment can be a webhook token at all."""
    return bool(token) and WEBHOOK_TOKEN_PATTERN.match(token) is not None


def mask_token(token: str | None) -> str:
    """First characters of a token, for logs."""
    if not token:
        return ""
    return f"{token[:8]}..."


class TenantResolver:
    """
    Webhook handshake and delivery routing.

    Uses the injected CredentialStore for every lookup.
    """

    def __init__(self, store: CredentialStore):
        self.store = store

    def resolve(self, webhook_token: str) -> TenantCredentials | None:
        """
        Resolve tenant credentials from a webhook token.

        Returns:
            Credentials if the token is known, None otherwise
        """
        if not is_parseable_token(webhook_token):
            return None

        credentials = self.store.find_by_webhook_token(webhook_token)

        if credentials:
            logger.debug(
                "Resolved tenant from webhook token",
                extra={"tenant_id": credentials.tenant_id},
            )
        else:
            logger.warning(
                f"No tenant found for webhook token {mask_token(webhook_token)}"
            )

        return credentials

    def verify(
        self,
        webhook_token: str,
        mode: str | None,
        verify_token: str | None,
        challenge: str | None,
    ) -> str | None:
        """
        Handle the hub.* verification handshake.

        Succeeds only for mode "subscribe", a known webhook token and a verify
        token equal to the stored one. Marks the tenant verified on success;
        repeating a valid handshake keeps succeeding.

        Returns:
            The challenge to echo, or None to reject
        """
        if mode != HUB_MODE_SUBSCRIBE or not verify_token:
            logger.warning("Webhook verification rejected: bad mode or missing verify token")
            return None

        credentials = self.resolve(webhook_token)
        if credentials is None or not credentials.verify_token:
            logger.warning("Webhook verification rejected: unknown tenant")
            return None

        if not hmac.compare_digest(
            credentials.verify_token.encode("utf-8"),
            verify_token.encode("utf-8"),
        ):
            logger.warning(
                "Webhook verification rejected: verify token mismatch",
                extra={"tenant_id": credentials.tenant_id},
            )
            return None

        self.store.mark_verified(credentials)
        logger.info(
            "Webhook verified",
            extra={"tenant_id": credentials.tenant_id},
        )
        return challenge or ""

    def accepts_routing_id(self, credentials: TenantCredentials, routing_id: str | None) -> bool:
        """
        Whether a change delivered to ``routing_id`` belongs to this tenant.

        A change without a routing id is accepted; one whose routing id differs
        from the stored phone_number_id is not.
        """
        if not routing_id:
            return True

        if routing_id != credentials.phone_number_id:
            logger.warning(
                "Ignoring delivery for unexpected phone_number_id",
                extra={
                    "tenant_id": credentials.tenant_id,
                    "routing_id": routing_id,
                    "expected_routing_id": credentials.phone_number_id,
                },
            )
            return False

        return True
