#!/usr/bin/env python3
"""CallbackSink example -- push a handful of mesh messages through the full
pipeline and collect the documents in memory instead of MongoDB.

Directly runnable (no broker or database required).

Usage::

    python examples/callback_sink_example.py
    python examples/callback_sink_example.py --kpi-prefix site1/kpi/
"""

from __future__ import annotations

import argparse
import asyncio

from mesh_ingest import Bridge
from mesh_ingest.config import BridgeConfig, TopicSettings
from mesh_ingest.sinks import CallbackSink, Store

MESSAGES = [
    ("mesh/data/sensor42", b"21.5"),
    ("mesh/kpi/node7", b"temp=21;humidity=58;fw=1.2.3;garbage"),
    ("mesh/status/node7", b'{"online": true, "uptime": 3600}'),
    ("mesh/status/node8", b"offline"),
]


async def main(kpi_prefix: str) -> None:
    documents: dict[Store, list[dict]] = {store: [] for store in Store}

    cfg = BridgeConfig(topics=TopicSettings(kpi=kpi_prefix))
    bridge = Bridge(cfg, sink=CallbackSink(lambda store, doc: documents[store].append(doc)))

    async with bridge.resources() as dispatcher:
        outcomes = await asyncio.gather(*(dispatcher.on_message(t, p) for t, p in MESSAGES))

    for outcome in outcomes:
        status = "persisted" if outcome.persisted else f"dropped ({outcome.reason})"
        print(f"{outcome.topic:<22} {outcome.category.value:<7} {status}")

    print()
    for store, docs in documents.items():
        print(f"{store.value}: {docs}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--kpi-prefix", default="mesh/kpi/", help="KPI topic prefix (default: mesh/kpi/)")
    args = parser.parse_args()
    asyncio.run(main(args.kpi_prefix))
