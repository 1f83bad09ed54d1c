from __future__ import annotations

from ..metrics.market import _safe_counter

_events_total = None


def get_events_total():
    global _events_total
    if _events_total is None:
        _events_total = _safe_counter("events_total", "Marketplace events published", ["type"])
    return _events_total
