"""Sink abstraction layer with per-insert timeouts.

Provides:
- ``Store``      - the three logical record stores.
- ``SinkConfig`` - per-sink timeout knobs.
- ``Sink``       - abstract base class that every concrete sink implements.
- ``BootstrapError`` - raised when a sink cannot be made ready at start-up.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel

from mesh_ingest.models import SensorRecord

__all__ = ["BootstrapError", "Sink", "SinkConfig", "Store"]

logger = logging.getLogger("mesh_ingest.sinks")


class BootstrapError(RuntimeError):
    """A required collaborator could not be brought up at start-up."""


class Store(str, Enum):
    """Logical, append-only record stores."""

    DATA = "data"
    KPIS = "kpis"
    STATUS = "status"


_LABELS = {Store.DATA: "Data", Store.KPIS: "KPI data", Store.STATUS: "Status data"}


# -----------------------------------------------------------------------
# Timeout configuration
# -----------------------------------------------------------------------


class SinkConfig(BaseModel):
    """Per-sink timeout knobs.

    Attributes:
        insert_timeout_s:
            Upper bound on a single insert, measured from the call.  A
            timed-out insert is logged and the record is dropped.
    """

    insert_timeout_s: float = 5.0


# -----------------------------------------------------------------------
# Sink ABC
# -----------------------------------------------------------------------


class Sink(ABC):
    """Abstract base class for all sinks.

    Concrete sinks implement ``connect``, ``insert`` and ``close``.  The
    ``store_*`` methods wrap ``insert`` with the configured timeout and
    turn every failure into a logged ``False``; nothing is retried.
    """

    def __init__(self, *, insert_timeout_s: float = 5.0) -> None:
        self.sink_config = SinkConfig(insert_timeout_s=insert_timeout_s)

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection / open resources.

        Raises :class:`BootstrapError` when the destination is unusable.
        """

    @abstractmethod
    async def insert(self, store: Store, document: dict[str, Any]) -> None:
        """Insert one document into *store*.  Raises on failure."""

    @abstractmethod
    async def close(self) -> None:
        """Release resources / close connections."""

    # -- timed inserts used by the dispatcher --

    async def store_data(self, record: SensorRecord) -> bool:
        return await self._timed_insert(Store.DATA, record.to_document())

    async def store_kpi(self, document: dict[str, Any]) -> bool:
        return await self._timed_insert(Store.KPIS, document)

    async def store_status(self, document: dict[str, Any]) -> bool:
        return await self._timed_insert(Store.STATUS, document)

    async def _timed_insert(self, store: Store, document: dict[str, Any]) -> bool:
        timeout = self.sink_config.insert_timeout_s
        try:
            await asyncio.wait_for(self.insert(store, document), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(
                "%s insert into '%s' timed out after %.1fs - record dropped",
                type(self).__name__,
                store.value,
                timeout,
            )
            return False
        except Exception as exc:
            logger.error(
                "%s insert into '%s' failed: %s - record dropped",
                type(self).__name__,
                store.value,
                exc,
            )
            return False
        logger.info("%s stored.", _LABELS[store])
        return True
