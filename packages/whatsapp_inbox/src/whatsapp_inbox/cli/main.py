"""
Inbox CLI

Command-line interface for inbox administration.

Commands:
- create-tenant: Onboard a tenant and issue its webhook URL
- update-tenant: Rotate the access token or change routing details
- show-tenant: Show a tenant's credentials summary and webhook path
- rotate-webhook-token: Issue a new webhook URL (the provider must be reconfigured)
- list-conversations: Conversations of a tenant
- refresh-url: Issue a fresh signed URL for a stored media message
- replay-dlq: Move dead-lettered events back to the inbound stream
- stream-info: Show Redis stream state
"""

import asyncio
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from inboxcore.settings import get_settings

app = typer.Typer(
    name="whatsapp-inbox",
    help="WhatsApp inbox administration CLI",
)

console = Console()


def get_db():
    """Get database session."""
    from inboxcore.db import get_db as _get_db
    return next(_get_db())


def get_redis():
    """Get Redis client."""
    from inboxcore.redis import get_redis_client
    return get_redis_client()


def get_store(db):
    from whatsapp_inbox.routing.credential_store import CredentialStore
    return CredentialStore(db, get_settings().WHATSAPP_ENCRYPTION_KEY or None)


def get_relay(settings, client):
    """Object relay over the configured bucket."""
    from whatsapp_inbox.storage.object_relay import ObjectRelay
    return ObjectRelay.from_settings(settings, client)


def webhook_url(token: str, base_url: str | None) -> str:
    path = f"/webhook/{token}"
    return f"{base_url.rstrip('/')}{path}" if base_url else path


@app.command()
def create_tenant(
    tenant_id: str = typer.Argument(..., help="Tenant (user) id"),
    verify_token: str = typer.Option(..., help="Verify token configured in the Meta app"),
    access_token: Optional[str] = typer.Option(None, help="Cloud API access token (encrypted at rest)"),
    phone_number_id: Optional[str] = typer.Option(None, help="WhatsApp phone number ID"),
    business_account_id: Optional[str] = typer.Option(None, help="WhatsApp Business Account ID"),
    phone_number: Optional[str] = typer.Option(None, help="Display phone number"),
    api_version: Optional[str] = typer.Option(None, help="Graph API version (default v23.0)"),
    base_url: Optional[str] = typer.Option(None, help="Public base URL of the webhook service"),
):
    """
    Register a tenant's WhatsApp Business credentials.

    A random webhook token is generated; configure the printed callback URL
    and the verify token in the Meta app.
    """
    db = get_db()

    try:
        store = get_store(db)

        existing = store.get(tenant_id)
        if existing:
            rprint(f"[yellow]Tenant already exists: {tenant_id}[/yellow]")
            rprint("  Use update-tenant to change credentials")
            raise typer.Exit(1)

        if access_token and not get_settings().WHATSAPP_ENCRYPTION_KEY:
            rprint("[yellow]Warning: WHATSAPP_ENCRYPTION_KEY not set, storing token unencrypted[/yellow]")

        credentials = store.create(
            tenant_id=tenant_id,
            verify_token=verify_token,
            access_token=access_token,
            phone_number_id=phone_number_id,
            business_account_id=business_account_id,
            phone_number=phone_number,
            api_version=api_version,
        )
        db.commit()

        rprint("[green]Tenant created:[/green]")
        rprint(f"  Tenant: {credentials.tenant_id}")
        rprint(f"  Phone Number ID: {credentials.phone_number_id or '-'}")
        rprint(f"  API version: {credentials.api_version}")
        rprint(f"  Callback URL: {webhook_url(credentials.webhook_token, base_url)}")

    finally:
        db.close()


@app.command()
def update_tenant(
    tenant_id: str = typer.Argument(..., help="Tenant (user) id"),
    access_token: Optional[str] = typer.Option(None, help="New access token"),
    verify_token: Optional[str] = typer.Option(None, help="New verify token (resets verification)"),
    phone_number_id: Optional[str] = typer.Option(None, help="WhatsApp phone number ID"),
    business_account_id: Optional[str] = typer.Option(None, help="WhatsApp Business Account ID"),
    phone_number: Optional[str] = typer.Option(None, help="Display phone number"),
    api_version: Optional[str] = typer.Option(None, help="Graph API version"),
):
    """
    Update a tenant's credentials. The webhook URL does not change.
    """
    db = get_db()

    try:
        store = get_store(db)
        credentials = store.get(tenant_id)
        if not credentials:
            rprint(f"[red]No tenant found: {tenant_id}[/red]")
            raise typer.Exit(1)

        was_verified = credentials.webhook_verified
        store.update(
            credentials,
            access_token=access_token,
            verify_token=verify_token,
            phone_number_id=phone_number_id,
            business_account_id=business_account_id,
            phone_number=phone_number,
            api_version=api_version,
        )
        db.commit()

        rprint("[green]Tenant updated[/green]")
        if was_verified and not credentials.webhook_verified:
            rprint("[yellow]Verify token changed: repeat the webhook verification in the Meta app[/yellow]")

    finally:
        db.close()


@app.command()
def show_tenant(
    tenant_id: str = typer.Argument(..., help="Tenant (user) id"),
    base_url: Optional[str] = typer.Option(None, help="Public base URL of the webhook service"),
):
    """
    Show a tenant's credentials summary. Secrets are not printed.
    """
    db = get_db()

    try:
        credentials = get_store(db).get(tenant_id)
        if not credentials:
            rprint(f"[red]No tenant found: {tenant_id}[/red]")
            raise typer.Exit(1)

        table = Table(title=f"Tenant {tenant_id}")
        table.add_column("Field", style="dim")
        table.add_column("Value")
        table.add_row("Callback URL", webhook_url(credentials.webhook_token, base_url))
        table.add_row("Webhook verified", "Yes" if credentials.webhook_verified else "No")
        table.add_row("Phone Number ID", credentials.phone_number_id or "-")
        table.add_row("Business Account ID", credentials.business_account_id or "-")
        table.add_row("Phone number", credentials.phone_number or "-")
        table.add_row("API version", credentials.api_version)
        table.add_row("Access token", "configured" if credentials.access_token_encrypted else "missing")
        console.print(table)

    finally:
        db.close()


@app.command()
def rotate_webhook_token(
    tenant_id: str = typer.Argument(..., help="Tenant (user) id"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
    base_url: Optional[str] = typer.Option(None, help="Public base URL of the webhook service"),
):
    """
    Issue a new webhook token.

    The old callback URL stops working immediately; deliveries are lost until
    the Meta app is pointed at the new URL and verification is repeated.
    """
    db = get_db()

    try:
        store = get_store(db)
        credentials = store.get(tenant_id)
        if not credentials:
            rprint(f"[red]No tenant found: {tenant_id}[/red]")
            raise typer.Exit(1)

        if not force:
            confirm = typer.confirm(
                f"Rotate webhook URL for tenant {tenant_id}? The current URL will stop working."
            )
            if not confirm:
                rprint("[yellow]Cancelled[/yellow]")
                raise typer.Exit(0)

        token = store.rotate_webhook_token(credentials)
        db.commit()

        rprint("[green]Webhook token rotated[/green]")
        rprint(f"  New callback URL: {webhook_url(token, base_url)}")

    finally:
        db.close()


@app.command()
def list_conversations(
    tenant_id: str = typer.Argument(..., help="Tenant (user) id"),
    limit: int = typer.Option(20, help="Maximum number of conversations to show"),
):
    """
    List conversations for a tenant.
    """
    db = get_db()

    try:
        from whatsapp_inbox.persistence.repo import InboxRepository

        conversations = InboxRepository(db).list_conversations(tenant_id)[:limit]

        if not conversations:
            rprint("[yellow]No conversations found[/yellow]")
            raise typer.Exit(0)

        table = Table(title=f"Conversations for tenant {tenant_id}")
        table.add_column("Phone")
        table.add_column("Name")
        table.add_column("Unread")
        table.add_column("Last Message")
        table.add_column("At")

        for conv in conversations:
            table.add_row(
                conv["counterparty_id"],
                conv["name"],
                str(conv["unread_count"]),
                conv["last_message"][:40],
                conv["last_message_time"].strftime("%Y-%m-%d %H:%M"),
            )

        console.print(table)

    finally:
        db.close()


@app.command()
def refresh_url(
    message_id: str = typer.Argument(..., help="Message ID"),
    requester_id: str = typer.Option(..., help="Sender or receiver of the message"),
):
    """
    Issue a fresh signed URL for a stored media message.
    """
    from whatsapp_inbox.providers.meta_cloud.client import MetaCloudClient
    from whatsapp_inbox.service.media_refresh import MediaRefreshService, RefreshError

    settings = get_settings()
    db = get_db()

    async def run():
        async with MetaCloudClient(settings.GRAPH_API_BASE_URL, settings.MEDIA_FETCH_TIMEOUT) as media_client:
            relay = get_relay(settings, media_client)
            return await MediaRefreshService(db, relay).refresh(message_id, requester_id)

    try:
        result = asyncio.run(run())
    except RefreshError as e:
        rprint(f"[red]{e.reason}: {e.message}[/red]")
        raise typer.Exit(1)
    finally:
        db.close()

    rprint("[green]URL refreshed[/green]")
    rprint(f"  {result.media_url}")


@app.command()
def replay_dlq(
    limit: int = typer.Option(10, help="Maximum messages to replay"),
):
    """
    Replay events from the dead letter stream.

    Each entry's original event is republished to the inbound stream and the
    DLQ entry is deleted.
    """
    from whatsapp_inbox.streams.consumer import InboxStreamConsumer
    from whatsapp_inbox.streams.groups import DLQ_STREAM
    from whatsapp_inbox.streams.producer import InboxStreamProducer

    redis_client = get_redis()
    consumer = InboxStreamConsumer(redis_client, "dlq-replay")
    producer = InboxStreamProducer(redis_client)

    entries = consumer.read_range(DLQ_STREAM, count=limit)
    if not entries:
        rprint("[yellow]No messages in DLQ[/yellow]")
        raise typer.Exit(0)

    rprint(f"[cyan]Found {len(entries)} messages in DLQ[/cyan]")

    replayed = 0
    for msg_id, entry in entries:
        try:
            new_id = producer.replay_dead_letter(entry)
        except ValueError as e:
            rprint(f"[yellow]Skipping {msg_id}: {e}[/yellow]")
            continue

        redis_client.xdel(DLQ_STREAM, msg_id)
        replayed += 1
        rprint(f"[green]Replayed {msg_id} as {new_id}[/green]")

    rprint(f"\n[green]Replayed {replayed} messages[/green]")


@app.command()
def stream_info(
    stream: Optional[str] = typer.Option(None, help="Stream name (default: inbound stream)"),
):
    """
    Show information about a Redis stream.
    """
    from whatsapp_inbox.streams.groups import INBOUND_STREAM, get_stream_info

    stream = stream or INBOUND_STREAM
    info = get_stream_info(get_redis(), stream)

    rprint(f"\n[cyan]Stream: {stream}[/cyan]")
    rprint(f"  Length: {info.get('length', 0)}")

    if info.get("error"):
        rprint(f"  [yellow]{info['error']}[/yellow]")

    if info.get("first_entry"):
        rprint(f"  First entry: {info['first_entry'][0]}")
    if info.get("last_entry"):
        rprint(f"  Last entry: {info['last_entry'][0]}")

    groups = info.get("groups", [])
    if groups:
        rprint("\n  Consumer Groups:")
        for group in groups:
            rprint(f"    - {group.get('name')}: {group.get('pending')} pending, {group.get('consumers')} consumers")


if __name__ == "__main__":
    app()
