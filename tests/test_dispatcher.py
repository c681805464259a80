"""Tests for mesh_ingest.dispatcher - classification and per-path handling."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any

import httpx
import pytest

from mesh_ingest.dispatcher import Dispatcher, TopicClassifier
from mesh_ingest.gateway import ConfidentialityGateway
from mesh_ingest.models import Category, IngestEvent
from mesh_ingest.sinks.base import Store
from mesh_ingest.sinks.callback import CallbackSink

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------


class RecordingSink(CallbackSink):
    """CallbackSink that keeps every insert and can be told to fail."""

    def __init__(self, *, fail: bool = False, **kwargs: Any) -> None:
        self.inserts: list[tuple[Store, dict[str, Any]]] = []
        self.fail = fail
        super().__init__(self._record, **kwargs)

    async def _record(self, store: Store, document: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("store rejected the write")
        self.inserts.append((store, document))


def _classifier() -> TopicClassifier:
    return TopicClassifier(kpi_prefix="mesh/kpi/", status_prefix="mesh/status/")


def _dispatcher(sink: RecordingSink, gateway: ConfidentialityGateway | None = None) -> Dispatcher:
    return Dispatcher(_classifier(), sink, gateway or ConfidentialityGateway(enabled=False))


def _event(topic: str, payload: bytes) -> IngestEvent:
    return IngestEvent(topic=topic, payload=payload, received_at=T0)


# -----------------------------------------------------------------------
# TopicClassifier
# -----------------------------------------------------------------------


class TestTopicClassifier:
    """Literal prefix classification in fixed priority order."""

    def test_kpi(self) -> None:
        assert _classifier().classify("mesh/kpi/node7") is Category.KPI

    def test_status(self) -> None:
        assert _classifier().classify("mesh/status/node7") is Category.STATUS

    def test_default_is_raw(self) -> None:
        assert _classifier().classify("mesh/data/node7") is Category.RAW
        assert _classifier().classify("something/else") is Category.RAW
        assert _classifier().classify("") is Category.RAW

    def test_kpi_wins_over_status(self) -> None:
        classifier = TopicClassifier(kpi_prefix="mesh/", status_prefix="mesh/status/")
        assert classifier.classify("mesh/status/node7") is Category.KPI

    def test_literal_prefix_not_segment_match(self) -> None:
        classifier = TopicClassifier(kpi_prefix="mesh/kpi", status_prefix="mesh/status/")
        assert classifier.classify("mesh/kpix/node7") is Category.KPI

    def test_empty_kpi_prefix_matches_everything(self) -> None:
        classifier = TopicClassifier(kpi_prefix="", status_prefix="mesh/status/")
        assert classifier.classify("mesh/status/node7") is Category.KPI


# -----------------------------------------------------------------------
# KPI path
# -----------------------------------------------------------------------


class TestKpiPath:
    @pytest.mark.asyncio
    async def test_kpi_document_written(self) -> None:
        sink = RecordingSink()
        outcome = await _dispatcher(sink).handle(_event("mesh/kpi/node7", b"temp=21;rssi=-70;fw=1.2.3;junk"))

        assert outcome.persisted is True
        assert outcome.category is Category.KPI
        assert sink.inserts == [
            (
                Store.KPIS,
                {"temp": 21, "rssi": -70, "fw": "1.2.3", "device_id": "node7", "timestamp": T0},
            )
        ]

    @pytest.mark.asyncio
    async def test_identity_fields_never_overridden(self) -> None:
        sink = RecordingSink()
        await _dispatcher(sink).handle(_event("mesh/kpi/node7", b"device_id=x;timestamp=1"))
        _store, doc = sink.inserts[0]
        assert doc["device_id"] == "node7"
        assert doc["timestamp"] == T0

    @pytest.mark.asyncio
    async def test_kpi_never_calls_gateway(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"result": "x"})

        gateway = ConfidentialityGateway(enabled=True, endpoint="http://cipher", transport=httpx.MockTransport(handler))
        sink = RecordingSink()
        async with gateway:
            await _dispatcher(sink, gateway).handle(_event("mesh/kpi/node7", b"a=1"))
        assert calls == []
        assert len(sink.inserts) == 1

    @pytest.mark.asyncio
    async def test_insert_failure_drops(self) -> None:
        outcome = await _dispatcher(RecordingSink(fail=True)).handle(_event("mesh/kpi/n", b"a=1"))
        assert outcome.persisted is False
        assert outcome.reason == "kpi insert failed"


# -----------------------------------------------------------------------
# Status path
# -----------------------------------------------------------------------


class TestStatusPath:
    @pytest.mark.asyncio
    async def test_json_object_stamped(self) -> None:
        sink = RecordingSink()
        outcome = await _dispatcher(sink).handle(_event("mesh/status/node7", b'{"x":1}'))

        assert outcome.persisted is True
        assert sink.inserts == [(Store.STATUS, {"x": 1, "timestamp": T0})]

    @pytest.mark.asyncio
    async def test_existing_timestamp_overwritten(self) -> None:
        sink = RecordingSink()
        await _dispatcher(sink).handle(_event("mesh/status/node7", b'{"timestamp": "old", "up": true}'))
        assert sink.inserts[0][1] == {"timestamp": T0, "up": True}

    @pytest.mark.asyncio
    async def test_non_json_dropped_with_one_error(self, caplog: pytest.LogCaptureFixture) -> None:
        sink = RecordingSink()
        outcome = await _dispatcher(sink).handle(_event("mesh/status/node7", b"online"))

        assert outcome.persisted is False
        assert sink.inserts == []
        errors = [r for r in caplog.records if r.levelname == "ERROR"]
        assert len(errors) == 1
        assert "status JSON" in errors[0].getMessage()

    @pytest.mark.parametrize("payload", [b"[1, 2]", b"42", b'"text"', b"null"])
    @pytest.mark.asyncio
    async def test_json_non_object_dropped(self, payload: bytes) -> None:
        sink = RecordingSink()
        outcome = await _dispatcher(sink).handle(_event("mesh/status/node7", payload))
        assert outcome.persisted is False
        assert sink.inserts == []

    @pytest.mark.parametrize("payload", [b'{"x": NaN}', b'{"x": Infinity}', b'{"x": -Infinity}'])
    @pytest.mark.asyncio
    async def test_non_standard_constants_dropped(self, payload: bytes, caplog: pytest.LogCaptureFixture) -> None:
        sink = RecordingSink()
        outcome = await _dispatcher(sink).handle(_event("mesh/status/n", payload))

        assert outcome.persisted is False
        assert sink.inserts == []
        assert "Failed to parse status JSON" in caplog.text

    @pytest.mark.asyncio
    async def test_deeply_nested_json_dropped(self, caplog: pytest.LogCaptureFixture) -> None:
        sink = RecordingSink()
        payload = b'{"a":' + b"[" * 100_000 + b"]" * 100_000 + b"}"
        outcome = await _dispatcher(sink).handle(_event("mesh/status/n", payload))

        assert outcome.persisted is False
        assert outcome.reason.startswith("invalid status JSON")
        assert sink.inserts == []
        assert "Failed to parse status JSON" in caplog.text


# -----------------------------------------------------------------------
# Raw path
# -----------------------------------------------------------------------


class TestRawPath:
    @pytest.mark.asyncio
    async def test_gateway_disabled_persists_unchanged(self) -> None:
        sink = RecordingSink()
        outcome = await _dispatcher(sink).handle(_event("mesh/data/sensor42", b"21.5"))

        assert outcome.persisted is True
        assert outcome.category is Category.RAW
        assert sink.inserts == [(Store.DATA, {"device_id": "sensor42", "payload": "21.5", "timestamp": T0})]

    @pytest.mark.asyncio
    async def test_unknown_topic_goes_to_raw(self) -> None:
        sink = RecordingSink()
        await _dispatcher(sink).handle(_event("sensor42", b"x"))
        assert sink.inserts[0][0] is Store.DATA
        assert sink.inserts[0][1]["device_id"] == "sensor42"

    @pytest.mark.asyncio
    async def test_gateway_substitutes_payload(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            text = json.loads(request.content)["text"]
            return httpx.Response(200, json={"result": text[::-1]})

        gateway = ConfidentialityGateway(enabled=True, endpoint="http://cipher", transport=httpx.MockTransport(handler))
        sink = RecordingSink()
        async with gateway:
            outcome = await _dispatcher(sink, gateway).handle(_event("mesh/data/s1", b"abc"))

        assert outcome.persisted is True
        assert sink.inserts[0][1]["payload"] == "cba"

    @pytest.mark.asyncio
    async def test_gateway_unreachable_drops_event(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway = ConfidentialityGateway(enabled=True, endpoint="http://cipher", transport=httpx.MockTransport(handler))
        sink = RecordingSink()
        async with gateway:
            outcome = await _dispatcher(sink, gateway).handle(_event("mesh/data/s1", b"secret"))

        assert outcome.persisted is False
        assert "confidentiality transform failed" in outcome.reason
        assert sink.inserts == []

    @pytest.mark.asyncio
    async def test_gateway_enabled_without_endpoint_drops_event(self) -> None:
        gateway = ConfidentialityGateway(enabled=True, endpoint=None)
        sink = RecordingSink()
        async with gateway:
            outcome = await _dispatcher(sink, gateway).handle(_event("mesh/data/s1", b"secret"))
        assert outcome.persisted is False
        assert sink.inserts == []

    @pytest.mark.asyncio
    async def test_insert_failure_drops(self) -> None:
        outcome = await _dispatcher(RecordingSink(fail=True)).handle(_event("mesh/data/s1", b"x"))
        assert outcome.persisted is False
        assert outcome.reason == "data insert failed"


# -----------------------------------------------------------------------
# Inbound callback and concurrency
# -----------------------------------------------------------------------


class TestDispatcherInbound:
    @pytest.mark.asyncio
    async def test_on_message_stamps_receipt_time(self) -> None:
        sink = RecordingSink()
        before = datetime.now(timezone.utc)
        outcome = await _dispatcher(sink).on_message("mesh/data/s1", b"x")
        after = datetime.now(timezone.utc)

        assert outcome.persisted is True
        stamped = sink.inserts[0][1]["timestamp"]
        assert before <= stamped <= after

    @pytest.mark.asyncio
    async def test_logs_received_diagnostic(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level("INFO", logger="mesh_ingest.dispatcher")
        await _dispatcher(RecordingSink()).handle(_event("mesh/data/s1", b"hello"))
        assert "Received on mesh/data/s1" in caplog.text
        assert "hello" in caplog.text

    @pytest.mark.asyncio
    async def test_concurrent_events_each_inserted_once(self) -> None:
        sink = RecordingSink()
        dispatcher = _dispatcher(sink)
        topics = (
            [f"mesh/data/d{i}" for i in range(20)]
            + [f"mesh/kpi/k{i}" for i in range(20)]
            + [f"mesh/status/s{i}" for i in range(20)]
        )

        outcomes = await asyncio.gather(
            *(dispatcher.handle(_event(t, b'{"v": 1}' if "status" in t else b"v=1")) for t in topics)
        )

        assert all(o.persisted for o in outcomes)
        assert len(sink.inserts) == len(topics)
        counts = {store: sum(1 for s, _ in sink.inserts if s is store) for store in Store}
        assert counts == {Store.DATA: 20, Store.KPIS: 20, Store.STATUS: 20}
