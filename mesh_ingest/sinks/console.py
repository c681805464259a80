"""Console sink - prints documents to stdout instead of storing them.

Useful for dry runs and for checking what the bridge would persist.
"""

from __future__ import annotations

import json
import sys
from typing import IO, Any

from mesh_ingest.sinks.base import Sink, Store

__all__ = ["ConsoleSink"]


class ConsoleSink(Sink):
    """Writes one JSON line per document, tagged with the target store.

    Parameters:
        stream: Writable file-like object (defaults to ``sys.stdout``).
        **kwargs: Forwarded to :class:`Sink`.
    """

    def __init__(self, *, stream: IO[str] | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._stream = stream or sys.stdout

    async def connect(self) -> None:
        """No-op - stdout is always available."""

    async def insert(self, store: Store, document: dict[str, Any]) -> None:
        line = json.dumps({"store": store.value, "document": document}, default=str)
        self._stream.write(line + "\n")
        self._stream.flush()

    async def close(self) -> None:
        """No-op - we do not own stdout."""
