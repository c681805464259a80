"""Mesh Ingest Bridge - classify MQTT messages by topic and persist them
to MongoDB, optionally encrypting raw payloads on the way.

Quick start::

    from mesh_ingest import Bridge
    from mesh_ingest.config import load_config

    Bridge(load_config("bridge.yaml")).run()
"""

from __future__ import annotations

from mesh_ingest.bridge import Bridge
from mesh_ingest.coercer import coerce_fields
from mesh_ingest.dispatcher import Dispatcher, TopicClassifier
from mesh_ingest.gateway import ConfidentialityGateway, GatewayResult
from mesh_ingest.models import Category, IngestEvent, Outcome, SensorRecord

__all__ = [
    "Bridge",
    "Category",
    "ConfidentialityGateway",
    "Dispatcher",
    "GatewayResult",
    "IngestEvent",
    "Outcome",
    "SensorRecord",
    "TopicClassifier",
    "coerce_fields",
]

__version__ = "0.1.0"
