"""
Inbox Worker Service

Consumes accepted webhook deliveries from Redis Streams and runs the
ingestion pipeline (normalize, relay media, persist).

Features:
- XREADGROUP consumer for horizontal scaling
- Pending-entry reclaim for events whose processing failed or whose
  consumer died
- Dead-lettering after INBOX_MAX_DELIVERIES attempts
- Graceful shutdown on SIGTERM / SIGINT
"""

import asyncio
import logging
import os
import signal
import socket
import time

from inboxcore.db import get_sessionmaker
from inboxcore.logging import setup_logging
from inboxcore.redis import get_redis_client
from inboxcore.settings import get_settings

from whatsapp_inbox.contracts.envelope import InboxEnvelope
from whatsapp_inbox.providers.meta_cloud.client import MetaCloudClient
from whatsapp_inbox.routing.credential_store import CredentialStore
from whatsapp_inbox.service.inbound_handler import InboundHandler
from whatsapp_inbox.storage.object_relay import ObjectRelay
from whatsapp_inbox.streams.consumer import InboxStreamConsumer
from whatsapp_inbox.streams.groups import INBOUND_STREAM, ensure_inbox_streams
from whatsapp_inbox.streams.producer import InboxStreamProducer

setup_logging()
logger = logging.getLogger(__name__)

# Configuration
CONSUMER_NAME = os.getenv(
    "INBOX_CONSUMER_NAME",
    f"inbox-worker-{socket.gethostname()}-{os.getpid()}",
)
BATCH_SIZE = int(os.getenv("INBOX_BATCH_SIZE", "10"))
BLOCK_MS = int(os.getenv("INBOX_BLOCK_MS", "5000"))
RECLAIM_INTERVAL_SEC = int(os.getenv("INBOX_RECLAIM_INTERVAL", "60"))
RECLAIM_IDLE_MS = int(os.getenv("INBOX_RECLAIM_IDLE_MS", "60000"))
MAX_DELIVERIES = int(os.getenv("INBOX_MAX_DELIVERIES", "5"))

# Graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    global shutdown_requested
    logger.info(f"Received signal {signum}, requesting shutdown...")
    shutdown_requested = True


async def process_envelope(
    session_factory,
    relay: ObjectRelay,
    media_client: MetaCloudClient,
    encryption_key: str | None,
    envelope: InboxEnvelope,
) -> dict:
    """Run one envelope through the pipeline on its own session."""
    db = session_factory()
    try:
        handler = InboundHandler(db, CredentialStore(db, encryption_key), relay, media_client)
        return await handler.handle_envelope(envelope)
    finally:
        db.close()


async def process_entries(
    entries: list[tuple[str, InboxEnvelope, int]],
    consumer: InboxStreamConsumer,
    producer: InboxStreamProducer,
    process,
    max_deliveries: int = MAX_DELIVERIES,
) -> int:
    """
    Process stream entries and acknowledge the ones that are done.

    Args:
        entries: (stream id, envelope, delivery count) tuples
        process: coroutine function taking an envelope

    An entry that raises stays pending for reclaim, unless it already used
    up its deliveries, in which case it is dead-lettered and acknowledged.

    Returns:
        Number of entries acknowledged
    """
    acked = 0

    for msg_id, envelope, delivery_count in entries:
        try:
            result = await process(envelope)
        except Exception as e:
            logger.error(
                f"Failed to process inbound event {msg_id}: {e}",
                exc_info=True,
                extra={"tenant_id": envelope.tenant_id, "delivery_count": delivery_count},
            )
            if delivery_count >= max_deliveries:
                producer.dead_letter(envelope, error=str(e), delivery_count=delivery_count)
                consumer.ack(INBOUND_STREAM, msg_id)
                acked += 1
                logger.warning(
                    f"Moved inbound event {msg_id} to DLQ after {delivery_count} attempts",
                    extra={"tenant_id": envelope.tenant_id},
                )
            # Otherwise don't ACK, the entry will be reclaimed
            continue

        consumer.ack(INBOUND_STREAM, msg_id)
        acked += 1

        logger.debug(
            "Processed inbound event",
            extra={"msg_id": msg_id, "status": result.get("status", "processed")},
        )

    return acked


async def main_loop():
    """Main worker loop."""
    settings = get_settings()
    redis_client = get_redis_client()

    ensure_inbox_streams(redis_client)

    consumer = InboxStreamConsumer(redis_client, CONSUMER_NAME)
    producer = InboxStreamProducer(redis_client)
    session_factory = get_sessionmaker()
    encryption_key = settings.WHATSAPP_ENCRYPTION_KEY or None

    logger.info(
        f"Starting inbox worker "
        f"(consumer={CONSUMER_NAME}, batch={BATCH_SIZE}, max_deliveries={MAX_DELIVERIES})"
    )

    async with MetaCloudClient(settings.GRAPH_API_BASE_URL, settings.MEDIA_FETCH_TIMEOUT) as media_client:
        relay = ObjectRelay.from_settings(settings, media_client)
        if not relay.configured:
            logger.warning("MEDIA_BUCKET not set, media will be stored as failed relays")

        async def process(envelope: InboxEnvelope) -> dict:
            return await process_envelope(session_factory, relay, media_client, encryption_key, envelope)

        last_reclaim = time.monotonic()

        while not shutdown_requested:
            try:
                # Blocking read runs in a thread so the event loop stays free
                messages = await asyncio.to_thread(
                    consumer.read_messages,
                    INBOUND_STREAM,
                    BATCH_SIZE,
                    BLOCK_MS,
                )
                processed = await process_entries(
                    [(msg_id, envelope, 1) for msg_id, envelope in messages],
                    consumer,
                    producer,
                    process,
                )
                if processed:
                    logger.info(f"Processed {processed} inbound events")

                if time.monotonic() - last_reclaim >= RECLAIM_INTERVAL_SEC:
                    last_reclaim = time.monotonic()
                    reclaimed = consumer.reclaim_pending(
                        INBOUND_STREAM,
                        min_idle_ms=RECLAIM_IDLE_MS,
                        count=100,
                    )
                    if reclaimed:
                        logger.info(f"Reclaimed {len(reclaimed)} inbound events")
                        await process_entries(reclaimed, consumer, producer, process)

            except Exception as e:
                logger.error(f"Error in main loop: {e}", exc_info=True)
                await asyncio.sleep(1)

    logger.info("Inbox worker shutting down gracefully")


def main():
    """Entry point."""
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)
    logger.info("Inbox worker starting...")
    asyncio.run(main_loop())


if __name__ == "__main__":
    main()
