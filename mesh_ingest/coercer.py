"""Field coercer for KPI payloads.

KPI messages carry ``;``-separated ``key=value`` fields, e.g.
``"temp=21;humidity=58;mode=eco"``.  Integer values are stored as ``int``,
everything else (floats included) stays a string.
"""

from __future__ import annotations

import re
from typing import Any

from mesh_ingest.models import SensorRecord

__all__ = ["build_kpi_document", "coerce_fields", "coerce_value"]

FIELD_SEPARATOR = ";"
KEY_VALUE_SEPARATOR = "="

# ASCII digits only; int() alone would also accept "1_000", " 7" and
# non-ASCII digits.
_INTEGER_RE = re.compile(r"[+-]?[0-9]+")

# BSON integers are signed 64-bit
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def coerce_value(value: str) -> int | str:
    """Return *value* as ``int`` when it is a base-10 integer that fits in
    64 bits, else unchanged."""
    if _INTEGER_RE.fullmatch(value):
        number = int(value)
        if _INT64_MIN <= number <= _INT64_MAX:
            return number
    return value


def coerce_fields(payload: str) -> dict[str, int | str]:
    """Parse a KPI payload into a field mapping.

    Chunks without ``=`` are skipped.  Each chunk is split on its first
    ``=`` only, so ``"expr=a=b"`` gives ``{"expr": "a=b"}``.  A repeated key
    keeps its last value.
    """
    fields: dict[str, int | str] = {}
    for chunk in payload.split(FIELD_SEPARATOR):
        key, sep, value = chunk.partition(KEY_VALUE_SEPARATOR)
        if not sep:
            continue
        fields[key] = coerce_value(value)
    return fields


def build_kpi_document(record: SensorRecord) -> dict[str, Any]:
    """Build the ``kpis`` document for *record*.

    ``device_id`` and ``timestamp`` are applied after the payload fields
    and always win over payload fields of the same name.
    """
    document: dict[str, Any] = coerce_fields(record.payload)
    document["device_id"] = record.device_id
    document["timestamp"] = record.timestamp
    return document
