"""MQTT subscriber - turns delivered broker messages into ingest events.

paho-mqtt runs its network loop in a background thread; every message is
handed to the asyncio loop as its own task, so events are handled
concurrently and independently.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from typing import Any

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

from mesh_ingest.config import BrokerSettings
from mesh_ingest.models import IngestEvent, Outcome
from mesh_ingest.sinks.base import BootstrapError

__all__ = ["MqttSubscriber"]

logger = logging.getLogger("mesh_ingest.broker")

EventHandler = Callable[[IngestEvent], Awaitable[Outcome]]


class MqttSubscriber:
    """Subscribe to ``<prefix>#`` for every prefix and dispatch each message.

    Parameters:
        settings: Broker connection settings.
        prefixes: Topic prefixes to subscribe to.
        handler: Coroutine function called once per event.
        loop: Event loop the handler runs on.
    """

    def __init__(
        self,
        settings: BrokerSettings,
        prefixes: list[str],
        handler: EventHandler,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._settings = settings
        self._topics = [(f"{prefix}#", 0) for prefix in dict.fromkeys(prefixes)]
        self._handler = handler
        self._loop = loop
        self._client: mqtt.Client | None = None

    @property
    def topics(self) -> list[str]:
        return [topic for topic, _qos in self._topics]

    def start(self) -> None:
        """Connect to the broker and start the network thread.

        Raises :class:`BootstrapError` if the broker cannot be reached.
        """
        client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=self._settings.client_id,
            clean_session=True,
        )
        if self._settings.username:
            client.username_pw_set(self._settings.username, self._settings.password)
        client.on_connect = self._on_connect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message
        client.on_disconnect = self._on_disconnect

        try:
            client.connect(self._settings.host, self._settings.port, keepalive=self._settings.keepalive_s)
        except OSError as exc:
            raise BootstrapError(
                f"MQTT connection to {self._settings.host}:{self._settings.port} failed: {exc}"
            ) from exc

        client.loop_start()
        self._client = client
        logger.info("Connecting to MQTT broker at %s:%d ...", self._settings.host, self._settings.port)

    def stop(self) -> None:
        if self._client:
            self._client.disconnect()
            self._client.loop_stop()
            self._client = None
            logger.info("MQTT subscriber stopped")

    # -- paho callbacks (network thread) --

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            logger.error("MQTT connection refused: %s", reason_code)
            return
        logger.info("Connected to broker - subscribing to %s", ", ".join(self.topics))
        result, _mid = client.subscribe(self._topics)
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.error("MQTT subscribe failed: %s", mqtt.error_string(result))

    def _on_subscribe(self, client: mqtt.Client, userdata: Any, mid: int, reason_codes: Any, properties: Any) -> None:
        for topic, code in zip(self.topics, reason_codes):
            if code.is_failure:
                logger.error("Subscription to %s rejected: %s", topic, code)

    def _on_disconnect(
        self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any
    ) -> None:
        if reason_code.is_failure:
            logger.warning("Unexpected MQTT disconnect (%s) - reconnecting", reason_code)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        if self._loop.is_closed():
            logger.warning("Event loop closed - dropping message on %s", msg.topic)
            return
        event = IngestEvent.received(msg.topic, bytes(msg.payload))
        coro = self._handler(event)
        try:
            future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        except RuntimeError:
            # loop closed between the check and the hand-off
            coro.close()
            logger.warning("Event loop closed - dropping message on %s", msg.topic)
            return
        future.add_done_callback(self._report_failure)

    @staticmethod
    def _report_failure(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Unhandled error while processing message: %r", exc)
