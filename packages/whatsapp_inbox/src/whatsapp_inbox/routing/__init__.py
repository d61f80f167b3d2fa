"""Tenant credentials and webhook routing."""

from whatsapp_inbox.routing.credential_store import CredentialStore, generate_webhook_token
from whatsapp_inbox.routing.tenant_resolver import TenantResolver, is_parseable_token

__all__ = [
    "CredentialStore",
    "TenantResolver",
    "generate_webhook_token",
    "is_parseable_token",
]
