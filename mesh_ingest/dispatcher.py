"""Topic classifier and dispatcher.

Each delivered message is classified by literal topic prefix, in fixed
priority order, and routed to one handling path:

- KPI prefix    -> ``key=value`` fields coerced into the ``kpis`` store.
- status prefix -> JSON object stamped and written to the ``status`` store.
- anything else -> raw record, optionally encrypted, written to ``data``.

Prefixes are compared with ``str.startswith`` on the whole topic, so a KPI
prefix ``mesh/kpi`` also matches ``mesh/kpix/...``.
"""

from __future__ import annotations

import json
import logging

from mesh_ingest.coercer import build_kpi_document
from mesh_ingest.gateway import ConfidentialityGateway
from mesh_ingest.models import Category, IngestEvent, Outcome, SensorRecord
from mesh_ingest.sinks.base import Sink

__all__ = ["Dispatcher", "TopicClassifier"]

logger = logging.getLogger("mesh_ingest.dispatcher")


def _reject_constant(name: str) -> float:
    raise ValueError(f"invalid JSON constant {name!r}")


class TopicClassifier:
    """Select a :class:`Category` for a topic.

    Parameters:
        kpi_prefix: Topics starting with this go to the KPI path.
        status_prefix: Topics starting with this (and not the KPI prefix)
                       go to the status path.
    """

    def __init__(self, *, kpi_prefix: str, status_prefix: str) -> None:
        self.kpi_prefix = kpi_prefix
        self.status_prefix = status_prefix

    def classify(self, topic: str) -> Category:
        if topic.startswith(self.kpi_prefix):
            return Category.KPI
        if topic.startswith(self.status_prefix):
            return Category.STATUS
        return Category.RAW


class Dispatcher:
    """Classify, transform and persist one event at a time.

    Holds only read-only collaborators, so ``handle`` may run for many
    events concurrently.

    Parameters:
        classifier: Topic classifier.
        sink: Connected sink receiving the documents.
        gateway: Confidentiality gateway applied on the raw path.
    """

    def __init__(self, classifier: TopicClassifier, sink: Sink, gateway: ConfidentialityGateway) -> None:
        self.classifier = classifier
        self.sink = sink
        self.gateway = gateway

    async def on_message(self, topic: str, payload: bytes) -> Outcome:
        """Inbound broker callback; stamps the receipt time and handles the event."""
        return await self.handle(IngestEvent.received(topic, payload))

    async def handle(self, event: IngestEvent) -> Outcome:
        category = self.classifier.classify(event.topic)
        logger.info(
            "Received on %s [%s, device=%s]: %s",
            event.topic,
            category.value,
            event.device_id,
            event.text,
        )

        if category is Category.KPI:
            return await self._handle_kpi(event)
        if category is Category.STATUS:
            return await self._handle_status(event)
        return await self._handle_raw(event)

    # -- handling paths --

    async def _handle_kpi(self, event: IngestEvent) -> Outcome:
        document = build_kpi_document(SensorRecord.from_event(event))
        if not await self.sink.store_kpi(document):
            return Outcome.dropped(event, Category.KPI, "kpi insert failed")
        return Outcome.stored(event, Category.KPI)

    async def _handle_status(self, event: IngestEvent) -> Outcome:
        try:
            document = json.loads(event.text, parse_constant=_reject_constant)
        except (ValueError, RecursionError) as exc:
            logger.error("Failed to parse status JSON on %s: %s", event.topic, exc)
            return Outcome.dropped(event, Category.STATUS, f"invalid status JSON: {exc}")
        if not isinstance(document, dict):
            logger.error(
                "Failed to parse status JSON on %s: expected an object, got %s",
                event.topic,
                type(document).__name__,
            )
            return Outcome.dropped(event, Category.STATUS, "status payload is not a JSON object")

        document["timestamp"] = event.received_at
        if not await self.sink.store_status(document):
            return Outcome.dropped(event, Category.STATUS, "status insert failed")
        return Outcome.stored(event, Category.STATUS)

    async def _handle_raw(self, event: IngestEvent) -> Outcome:
        record = SensorRecord.from_event(event)

        result = await self.gateway.protect(record.payload)
        if not result.ok:
            logger.warning("Dropping raw record from %s: %s", event.topic, result.reason)
            return Outcome.dropped(event, Category.RAW, f"confidentiality transform failed: {result.reason}")
        record = record.with_payload(result.text)

        if not await self.sink.store_data(record):
            return Outcome.dropped(event, Category.RAW, "data insert failed")
        return Outcome.stored(event, Category.RAW)
