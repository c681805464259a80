"""Callback sink – delegates inserts to a user-provided Python callable.

This allows embedders to hook any custom storage into the pipeline without
having to subclass :class:`Sink`::

    bridge = Bridge(config, sink=CallbackSink(lambda store, doc: rows.append(doc)))
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable

from mesh_ingest.sinks.base import Sink, Store

__all__ = ["CallbackSink"]


class CallbackSink(Sink):
    """Wraps a user-supplied function as a sink.

    The callable receives ``(store, document)`` for every insert.  It can
    be a regular function, a coroutine function, or a lambda.  Exceptions
    raised by the callable count as failed inserts.

    Parameters:
        callback: ``(store: Store, document: dict) -> None`` or async variant.
        **kwargs: Forwarded to :class:`Sink`.
    """

    def __init__(
        self,
        callback: Callable[[Store, dict[str, Any]], Any],
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._callback = callback
        self._is_async = inspect.iscoroutinefunction(callback)

    async def connect(self) -> None:
        """No-op."""

    async def insert(self, store: Store, document: dict[str, Any]) -> None:
        if self._is_async:
            await self._callback(store, document)
        else:
            # Run sync callback in executor to avoid blocking the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._callback, store, document)

    async def close(self) -> None:
        """No-op."""
