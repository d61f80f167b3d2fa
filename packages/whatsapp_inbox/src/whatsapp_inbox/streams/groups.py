"""
Inbox stream layout.

Both streams are read by the same consumer group. Groups start at "0" so a
worker that comes up after the webhook still sees everything already queued.
"""

import logging
from dataclasses import dataclass

import redis

logger = logging.getLogger(__name__)

INBOUND_STREAM = "inbox:whatsapp:inbound"
DLQ_STREAM = "inbox:whatsapp:dlq"

INGESTION_GROUP = "inbox-ingestion"


@dataclass(frozen=True)
class StreamConfig:
    stream_name: str
    group_name: str = INGESTION_GROUP
    start_id: str = "0"


STREAM_CONFIGS = (
    StreamConfig(INBOUND_STREAM),
    StreamConfig(DLQ_STREAM),
)


def ensure_stream_group(
    client: redis.Redis,
    stream_name: str,
    group_name: str,
    start_id: str = "0",
) -> bool:
    """
    Create ``group_name`` on ``stream_name`` (and the stream itself) unless
    it is already there.

    Returns:
        Whether the group was created by this call
    """
    try:
        client.xgroup_create(stream_name, group_name, id=start_id, mkstream=True)
    except redis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise
        return False

    logger.info("Created stream consumer group", extra={"stream": stream_name, "group": group_name})
    return True


def ensure_inbox_streams(client: redis.Redis) -> None:
    """Idempotent setup run by the webhook (stream dispatch) and the worker."""
    for config in STREAM_CONFIGS:
        ensure_stream_group(client, config.stream_name, config.group_name, config.start_id)


def get_stream_info(client: redis.Redis, stream_name: str) -> dict:
    """Summary of a stream for the CLI: length, first/last entry, groups."""
    try:
        summary = client.xinfo_stream(stream_name)
        groups = client.xinfo_groups(stream_name)
    except redis.ResponseError:
        return {"length": 0, "error": f"Stream {stream_name} does not exist"}

    return {
        "length": summary.get("length", 0),
        "first_entry": summary.get("first-entry"),
        "last_entry": summary.get("last-entry"),
        "groups": groups,
    }
