from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping

logger = logging.getLogger(__name__)

PAYLOAD_TRIM_THRESHOLD = 5 * 1024 * 1024
SERVER_PAYLOAD_LIMIT = 15 * 1024 * 1024
ESSENTIAL_SCHEDULE_FIELDS = ("id", "name", "timeBlock", "area", "day")


def payload_size(payload: Any) -> int:
    """Size in bytes of the compact JSON encoding sent over the wire."""
    return len(json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


def trim_uploaded_schedules(entries: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [{key: entry[key] for key in ESSENTIAL_SCHEDULE_FIELDS if key in entry} for entry in entries]


def trim_setup_payload(payload: Mapping[str, Any], *, threshold: int = PAYLOAD_TRIM_THRESHOLD) -> Dict[str, Any]:
    """Return ``payload`` with uploaded schedules cut to their essential fields when it is over ``threshold``.

    The same trim applies every time the threshold is crossed, and trimming an
    already trimmed payload changes nothing.
    """
    result = dict(payload)
    size = payload_size(result)
    if size <= threshold:
        return result
    entries = result.get("uploadedSchedules")
    if isinstance(entries, list):
        logger.warning("Weekly setup payload is %d bytes; trimming %d uploaded schedules", size, len(entries))
        result["uploadedSchedules"] = trim_uploaded_schedules(entries)
    return result


def sanitize_uploaded_schedules(entries: Any) -> List[Dict[str, Any]]:
    """Coerce uploaded schedule rows into the stored shape."""
    if not isinstance(entries, list):
        return []
    sanitized: List[Dict[str, Any]] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        breaks = entry.get("breaks")
        sanitized.append(
            {
                "id": str(entry.get("id") or ""),
                "name": str(entry.get("name") or ""),
                "timeBlock": str(entry.get("timeBlock") or ""),
                "area": str(entry.get("area") or ""),
                "day": str(entry.get("day") or ""),
                "breaks": [dict(item) for item in breaks if isinstance(item, Mapping)] if isinstance(breaks, list) else [],
                "hadBreak": bool(entry.get("hadBreak", False)),
                "breakDate": entry.get("breakDate") or None,
            }
        )
    return sanitized
