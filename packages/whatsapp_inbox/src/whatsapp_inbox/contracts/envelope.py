"""
Stream envelope for inbound deliveries and dead letters.

On the wire (XADD) every field is a string; ``payload`` and ``metadata`` are
JSON documents.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(value)
    return datetime.now(timezone.utc)


@dataclass
class InboxEnvelope:
    """
    One unit of work on an inbox stream.

    ``payload`` of an inbound event is a webhook change value; the tenant's
    access token is never part of it, the worker reloads credentials by
    ``tenant_id``. ``metadata`` carries transport details such as the stream
    entry id.
    """

    event_id: UUID
    event_type: str
    tenant_id: str
    occurred_at: datetime
    payload: dict[str, Any]
    version: int = 1
    correlation_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        event_type: str,
        tenant_id: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "InboxEnvelope":
        return cls(
            event_id=uuid4(),
            event_type=event_type,
            tenant_id=tenant_id,
            occurred_at=datetime.now(timezone.utc),
            payload=payload,
            correlation_id=correlation_id,
            metadata=dict(metadata or {}),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InboxEnvelope":
        """Inverse of to_dict(); used when replaying dead letters."""
        return cls(
            event_id=UUID(str(data["event_id"])),
            event_type=data["event_type"],
            tenant_id=str(data["tenant_id"]),
            occurred_at=_parse_time(data.get("occurred_at")),
            payload=data.get("payload") or {},
            version=int(data.get("version") or 1),
            correlation_id=data.get("correlation_id") or None,
            metadata=data.get("metadata") or {},
        )

    @classmethod
    def from_stream_message(cls, msg_id: str, data: dict[str, str]) -> "InboxEnvelope":
        """
        Decode an XREADGROUP / XCLAIM entry.

        Raises:
            KeyError: a required field is missing
            ValueError: a field cannot be decoded
        """
        decoded = {
            **data,
            "payload": json.loads(data.get("payload") or "{}"),
            "metadata": json.loads(data.get("metadata") or "{}"),
        }
        envelope = cls.from_dict(decoded)
        envelope.metadata["stream_msg_id"] = msg_id
        return envelope

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event_id"] = str(self.event_id)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data

    def to_stream_data(self) -> dict[str, str]:
        """Flat string mapping for XADD."""
        data = self.to_dict()
        return {
            **data,
            "version": str(self.version),
            "correlation_id": self.correlation_id or "",
            "payload": json.dumps(self.payload),
            "metadata": json.dumps(self.metadata),
        }
