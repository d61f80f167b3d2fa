"""
WhatsApp Inbox

Ingests WhatsApp Cloud API webhooks for many tenants, normalizes the
messages into one schema, relays attached media into object storage and sends
replies on behalf of the tenant.
"""

__version__ = "0.1.0"
