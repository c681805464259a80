"""MongoDB sink - inserts documents through pymongo's asyncio client.

Every collection is bound with a majority write concern, so an insert only
succeeds once a majority of replica-set members acknowledged it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote_plus

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError
from pymongo.write_concern import WriteConcern

from mesh_ingest.sinks.base import BootstrapError, Sink, Store

__all__ = ["MongoSink", "build_mongo_uri"]

logger = logging.getLogger("mesh_ingest.sinks.mongo")

MAJORITY = WriteConcern(w="majority")


def build_mongo_uri(
    host: str,
    port: int = 27017,
    username: str | None = None,
    password: str | None = None,
) -> str:
    """Return a ``mongodb://`` URI with percent-escaped credentials."""
    auth = ""
    if username:
        auth = quote_plus(username)
        if password:
            auth += ":" + quote_plus(password)
        auth += "@"
    return f"mongodb://{auth}{host}:{port}"


class MongoSink(Sink):
    """Insert documents into MongoDB collections ``data``, ``kpis`` and ``status``.

    Parameters:
        database: Database name (required).
        uri: Full connection URI.  When omitted it is built from
             *host* / *port* / *username* / *password*.
        data_collection: Collection used for raw records (default ``"data"``).
        connect_timeout_s: Bound on reaching a usable server at ``connect()``.
        insert_timeout_s / **kwargs: Forwarded to :class:`Sink`.
    """

    def __init__(
        self,
        *,
        database: str | None = None,
        uri: str | None = None,
        host: str | None = None,
        port: int = 27017,
        username: str | None = None,
        password: str | None = None,
        data_collection: str = "data",
        connect_timeout_s: float = 10.0,
        insert_timeout_s: float = 5.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(insert_timeout_s=insert_timeout_s, **kwargs)
        self._database = database
        self._uri = uri
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._data_collection = data_collection
        self._connect_timeout = connect_timeout_s
        self._client: AsyncMongoClient | None = None
        self._collections: dict[Store, Any] = {}

    def _resolve_uri(self) -> str:
        if self._uri:
            return self._uri
        if not self._host:
            raise BootstrapError("MongoSink needs either 'uri' or 'host'")
        return build_mongo_uri(self._host, self._port, self._username, self._password)

    async def connect(self) -> None:
        if not self._database:
            raise BootstrapError("MongoSink needs a 'database' name")
        uri = self._resolve_uri()
        timeout_ms = int(self._connect_timeout * 1000)

        client: AsyncMongoClient = AsyncMongoClient(
            uri,
            w="majority",
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
        )
        try:
            await asyncio.wait_for(client.admin.command("ping"), timeout=self._connect_timeout)
        except (PyMongoError, asyncio.TimeoutError, OSError) as exc:
            await client.close()
            raise BootstrapError(f"MongoDB connection error: {exc}") from exc

        db = client.get_database(self._database, write_concern=MAJORITY)
        self._client = client
        self._collections = {
            Store.DATA: db.get_collection(self._data_collection),
            Store.KPIS: db.get_collection(Store.KPIS.value),
            Store.STATUS: db.get_collection(Store.STATUS.value),
        }
        logger.info(
            "MongoSink connected to %s (collections=%s, %s, %s)",
            self._database,
            self._data_collection,
            Store.KPIS.value,
            Store.STATUS.value,
        )

    async def insert(self, store: Store, document: dict[str, Any]) -> None:
        if self._client is None:
            raise RuntimeError("MongoSink is not connected")
        await self._collections[store].insert_one(document)

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None
            self._collections = {}
            logger.info("MongoSink closed")
