"""Configuration loader for the mesh ingest bridge.

Settings come from an optional YAML file and are then overridden by
environment variables.  YAML layout::

    broker:           # MQTT connection
      host: localhost
      port: 1883
    topics:           # subscription / classification prefixes
      data: mesh/data/
      kpi: mesh/kpi/
      status: mesh/status/
    encryption:       # optional confidentiality transform
      enabled: false
      api_url: http://cipher:8080
    store:            # MongoDB connection
      host: mongo
      database: mesh
    sink:             # destination type (mongo | console | callback)
      type: mongo
    log_level: INFO

Environment overrides use the variable names listed in ``ENV_OVERRIDES``;
an empty variable counts as unset.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

__all__ = [
    "BridgeConfig",
    "BrokerSettings",
    "EncryptionSettings",
    "StoreSettings",
    "TopicSettings",
    "apply_env_overrides",
    "load_config",
    "load_yaml_config",
]

logger = logging.getLogger("mesh_ingest.config")


class BrokerSettings(BaseModel):
    """MQTT broker connection.

    Attributes:
        host: Broker hostname.
        port: Broker TCP port.
        username / password: Optional credentials.
        client_id: MQTT client identifier.
        keepalive_s: MQTT keep-alive interval.
    """

    host: str = "localhost"
    port: int = 1883
    username: str | None = None
    password: str | None = None
    client_id: str = "mqtt-orchestrator"
    keepalive_s: int = 60


class TopicSettings(BaseModel):
    """Topic prefixes; each is subscribed to as ``<prefix>#``."""

    data: str = "mesh/data/"
    kpi: str = "mesh/kpi/"
    status: str = "mesh/status/"

    def prefixes(self) -> list[str]:
        return [self.data, self.kpi, self.status]


class EncryptionSettings(BaseModel):
    enabled: bool = False
    api_url: str | None = None
    timeout_s: float = 5.0


class StoreSettings(BaseModel):
    """MongoDB connection.

    Attributes:
        uri: Full connection URI; when unset it is built from host/port/credentials.
        host / port: Server address.
        username / password: Credentials.
        database: Database name (required at bootstrap).
        data_collection: Collection for raw records.
        connect_timeout_s: Bound on reaching a usable server at start.
        insert_timeout_s: Bound on each insert.
    """

    uri: str | None = None
    host: str | None = None
    port: int = 27017
    username: str | None = None
    password: str | None = None
    database: str | None = None
    data_collection: str = "data"
    connect_timeout_s: float = 10.0
    insert_timeout_s: float = 5.0


class BridgeConfig(BaseModel):
    """Parsed representation of the full bridge configuration.

    Attributes:
        broker: MQTT connection settings.
        topics: Topic prefixes.
        encryption: Confidentiality transform settings.
        store: MongoDB settings (used by the ``mongo`` sink).
        sink: Raw sink dict passed to the sink factory; only ``type`` is
              needed for ``mongo``, which takes the rest from ``store``.
        log_level: Logging level string.
    """

    broker: BrokerSettings = Field(default_factory=BrokerSettings)
    topics: TopicSettings = Field(default_factory=TopicSettings)
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    sink: dict[str, Any] = Field(default_factory=lambda: {"type": "mongo"})
    log_level: str = "INFO"

    @property
    def sink_type(self) -> str:
        return str(self.sink.get("type", "mongo")).lower().strip()


# env var -> (section, key); section None means top level
ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "MQTT_BROKER": ("broker", "host"),
    "MQTT_PORT": ("broker", "port"),
    "MQTT_USERNAME": ("broker", "username"),
    "MQTT_PASSWORD": ("broker", "password"),
    "MQTT_TOPIC": ("topics", "data"),
    "MQTT_KPI_TOPIC": ("topics", "kpi"),
    "MQTT_MESH_STATUS_TOPIC": ("topics", "status"),
    "ENCRYPTION": ("encryption", "enabled"),
    "ENCRYPT_API_URL": ("encryption", "api_url"),
    "MONGO_URI": ("store", "uri"),
    "MONGO_USER": ("store", "username"),
    "MONGO_PASS": ("store", "password"),
    "MONGO_HOST": ("store", "host"),
    "MONGO_PORT": ("store", "port"),
    "MONGO_DATABASE": ("store", "database"),
    "MONGO_COLLECTION": ("store", "data_collection"),
    "LOG_LEVEL": (None, "log_level"),
}


def load_yaml_config(path: str | Path) -> BridgeConfig:
    """Load and validate a YAML configuration file (no environment overrides)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with path.open("r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    config = BridgeConfig.model_validate(raw)
    logger.info("Loaded config from %s (sink=%s)", path, config.sink_type)
    return config


def apply_env_overrides(config: BridgeConfig, environ: Mapping[str, str] | None = None) -> BridgeConfig:
    """Return a copy of *config* with non-empty environment values applied."""
    environ = os.environ if environ is None else environ
    data = config.model_dump()

    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var, "")
        if value == "":
            continue
        if var == "ENCRYPTION":
            # only the literal "true" (any case) enables encryption
            value = value.strip().lower() == "true"
        target = data if section is None else data[section]
        target[key] = value
        logger.debug("Config override from %s", var)

    return BridgeConfig.model_validate(data)


def load_config(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> BridgeConfig:
    """Load the YAML file at *path* (or defaults) and apply environment overrides."""
    config = load_yaml_config(path) if path is not None else BridgeConfig()
    return apply_env_overrides(config, environ)
