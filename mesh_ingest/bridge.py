"""Bridge - top-level orchestrator that wires the MQTT subscriber to the
dispatcher, the confidentiality gateway and the persistence sink.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import AsyncIterator

from mesh_ingest.config import BridgeConfig
from mesh_ingest.dispatcher import Dispatcher, TopicClassifier
from mesh_ingest.gateway import ConfidentialityGateway
from mesh_ingest.models import Outcome
from mesh_ingest.sinks.base import Sink
from mesh_ingest.sinks.factory import create_sink

__all__ = ["Bridge", "build_sink"]

logger = logging.getLogger("mesh_ingest")


def build_sink(config: BridgeConfig) -> Sink:
    """Create the sink named by ``config.sink``.

    The ``mongo`` sink takes its connection settings from ``config.store``;
    other sinks receive the remaining keys of ``config.sink``.
    """
    sink_dict = dict(config.sink)
    if config.sink_type == "mongo":
        sink_dict.update(config.store.model_dump(exclude_none=True))
    return create_sink(sink_dict)


class Bridge:
    """High-level API for running the ingestion bridge.

    Example::

        from mesh_ingest import Bridge
        from mesh_ingest.config import load_config

        Bridge(load_config("bridge.yaml")).run()

    Parameters:
        config: Parsed configuration.
        sink: Sink override; by default built from ``config.sink``.
        gateway: Gateway override; by default built from ``config.encryption``.
    """

    def __init__(
        self,
        config: BridgeConfig,
        *,
        sink: Sink | None = None,
        gateway: ConfidentialityGateway | None = None,
    ) -> None:
        self.config = config
        self.sink = sink if sink is not None else build_sink(config)
        self.gateway = gateway if gateway is not None else ConfidentialityGateway(
            enabled=config.encryption.enabled,
            endpoint=config.encryption.api_url,
            timeout_s=config.encryption.timeout_s,
        )
        self.classifier = TopicClassifier(
            kpi_prefix=config.topics.kpi,
            status_prefix=config.topics.status,
        )
        self._stop_event: asyncio.Event | None = None

    # ------------------------------------------------------------------
    # Resource lifecycle
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def resources(self) -> AsyncIterator[Dispatcher]:
        """Connect the sink and open the gateway for the duration of the block.

        A failing ``sink.connect()`` propagates (``BootstrapError``).
        """
        await self.sink.connect()
        try:
            await self.gateway.open()
            try:
                yield Dispatcher(self.classifier, self.sink, self.gateway)
            finally:
                await self.gateway.close()
        finally:
            await self.sink.close()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Blocking entry point - runs until SIGINT/SIGTERM."""
        try:
            asyncio.run(self.run_async())
        except KeyboardInterrupt:
            logger.info("Interrupted by user")

    async def run_async(self) -> None:
        """Async entry point - subscribe and process messages until stopped."""
        from mesh_ingest.broker import MqttSubscriber

        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()

        # NotImplementedError: raised on Windows where signal handlers are unsupported.
        # RuntimeError: raised when running in a non-main thread.
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self._stop_event.set)
                installed.append(sig)

        try:
            async with self.resources() as dispatcher:
                subscriber = MqttSubscriber(
                    self.config.broker,
                    self.config.topics.prefixes(),
                    dispatcher.handle,
                    loop,
                )
                subscriber.start()
                logger.info(
                    "Bridge running: kpi=%r status=%r data=%r encryption=%s",
                    self.config.topics.kpi,
                    self.config.topics.status,
                    self.config.topics.data,
                    "on" if self.gateway.enabled else "off",
                )
                try:
                    await self._stop_event.wait()
                    logger.info("Stop signal received - shutting down")
                finally:
                    subscriber.stop()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

    def stop(self) -> None:
        """Ask a running ``run_async`` to shut down."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def ingest_once(self, topic: str, payload: bytes) -> Outcome:
        """Push a single message through the full pipeline."""
        async with self.resources() as dispatcher:
            return await dispatcher.on_message(topic, payload)
