"""
Inbox Persistence

SQLAlchemy models and repository for the inbox tables.
"""

from whatsapp_inbox.persistence.models import (
    Contact,
    InboxBase,
    Message,
    TenantCredentials,
)
from whatsapp_inbox.persistence.repo import InboxRepository

__all__ = [
    "InboxBase",
    "Contact",
    "Message",
    "TenantCredentials",
    "InboxRepository",
]
