"""Persistence sinks for the mesh ingest bridge.

Import any sink you need directly from this package::

    from mesh_ingest.sinks import ConsoleSink, MongoSink
"""

from __future__ import annotations

import importlib
from typing import Any

from mesh_ingest.sinks.base import BootstrapError, Sink, SinkConfig, Store
from mesh_ingest.sinks.callback import CallbackSink
from mesh_ingest.sinks.console import ConsoleSink

# MongoSink is loaded on first access so the driver is only imported when used:
#   from mesh_ingest.sinks.mongo import MongoSink

__all__ = [
    "BootstrapError",
    "CallbackSink",
    "ConsoleSink",
    "Sink",
    "SinkConfig",
    "Store",
]


def __getattr__(name: str) -> Any:
    """Lazy-import sinks backed by external drivers."""
    _lazy = {
        "MongoSink": "mesh_ingest.sinks.mongo",
    }
    if name in _lazy:
        mod = importlib.import_module(_lazy[name])
        return getattr(mod, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
