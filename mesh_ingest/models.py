"""Common data models for the mesh ingest bridge.

Defines the ``IngestEvent`` delivered by the broker, the ``SensorRecord``
persisted to the ``data`` store, and the per-event ``Outcome``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

__all__ = ["Category", "IngestEvent", "Outcome", "SensorRecord", "device_id_from_topic", "utc_now"]


class Category(str, Enum):
    """Handling path selected for an event by topic prefix."""

    KPI = "kpi"
    STATUS = "status"
    RAW = "raw"


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC ``datetime``."""
    return datetime.now(timezone.utc)


def device_id_from_topic(topic: str) -> str:
    """Return the last ``/``-separated segment of *topic*.

    ``"mesh/data/sensor42"`` gives ``"sensor42"``, a topic without ``/``
    is returned whole and a trailing ``/`` gives an empty id.
    """
    return topic.split("/")[-1]


class IngestEvent(BaseModel):
    """A single message delivered by the broker.

    Attributes:
        topic: Full MQTT topic the message arrived on.
        payload: Raw message bytes.
        received_at: Moment the bridge received the message (UTC).
    """

    model_config = ConfigDict(frozen=True)

    topic: str
    payload: bytes
    received_at: datetime

    @classmethod
    def received(cls, topic: str, payload: bytes) -> IngestEvent:
        """Build an event stamped with the current time."""
        return cls(topic=topic, payload=payload, received_at=utc_now())

    @property
    def device_id(self) -> str:
        return device_id_from_topic(self.topic)

    @property
    def text(self) -> str:
        """Payload decoded as UTF-8 (undecodable bytes are replaced)."""
        return self.payload.decode("utf-8", errors="replace")


class SensorRecord(BaseModel):
    """Canonical raw record written to the ``data`` store.

    Attributes:
        device_id: Last segment of the topic.
        payload: Payload text, possibly replaced by the confidentiality gateway.
        timestamp: Receipt time of the originating event.
    """

    model_config = ConfigDict(frozen=True)

    device_id: str
    payload: str
    timestamp: datetime

    @classmethod
    def from_event(cls, event: IngestEvent) -> SensorRecord:
        return cls(device_id=event.device_id, payload=event.text, timestamp=event.received_at)

    def with_payload(self, payload: str) -> SensorRecord:
        """Return a copy carrying *payload*."""
        return self.model_copy(update={"payload": payload})

    def to_document(self) -> dict[str, Any]:
        """Return the document shape stored in the ``data`` collection."""
        return self.model_dump()


class Outcome(BaseModel):
    """Terminal state of one event: persisted, or dropped with a reason."""

    topic: str
    category: Category
    persisted: bool
    reason: str | None = None

    @classmethod
    def stored(cls, event: IngestEvent, category: Category) -> Outcome:
        return cls(topic=event.topic, category=category, persisted=True)

    @classmethod
    def dropped(cls, event: IngestEvent, category: Category, reason: str) -> Outcome:
        return cls(topic=event.topic, category=category, persisted=False, reason=reason)
