from __future__ import annotations

from typing import Optional
import logging
import os
from prometheus_client import Counter, Gauge, REGISTRY, start_http_server

log = logging.getLogger("apimarket.metrics")

_operations_total: Optional[Counter] = None
_operations_rejected_total: Optional[Counter] = None
_services_registered_total: Optional[Counter] = None
_subscriptions_total: Optional[Counter] = None
_api_calls_total: Optional[Counter] = None
_provider_payments_total: Optional[Counter] = None
_platform_fees_retained_total: Optional[Counter] = None
_platform_fees_withdrawn_total: Optional[Counter] = None
_refunds_total: Optional[Counter] = None
_retained_balance: Optional[Gauge] = None


class _NoOp:
    def labels(self, *args, **kwargs):
        return self
    def inc(self, *args, **kwargs):
        return None
    def set(self, *args, **kwargs):
        return None


def _existing_collector(name: str):
    try:
        coll = getattr(REGISTRY, "_names_to_collectors", {}).get(name)
        if coll is not None:
            return coll
        for coll in list(getattr(REGISTRY, "_collector_to_names", {}).keys()):  # type: ignore[attr-defined]
            if getattr(coll, "_name", None) == name:
                return coll
    except Exception:
        pass
    return None


def _safe_counter(name: str, doc: str, labelnames):
    if os.getenv("DISABLE_PROMETHEUS", "0") == "1":
        return _NoOp()
    try:
        return Counter(name, doc, labelnames)
    except ValueError:
        # Already registered (module reloads in tests); reuse the collector
        return _existing_collector(name) or _NoOp()


def _safe_gauge(name: str, doc: str, labelnames=()):
    if os.getenv("DISABLE_PROMETHEUS", "0") == "1":
        return _NoOp()
    try:
        return Gauge(name, doc, labelnames)
    except ValueError:
        coll = _existing_collector(name)
        if isinstance(coll, Gauge):
            return coll
        return _NoOp()


def get_operations_total():
    global _operations_total
    if _operations_total is None:
        _operations_total = _safe_counter("ledger_operations_total", "Ledger operations applied", ["operation"])
    return _operations_total


def get_operations_rejected_total():
    global _operations_rejected_total
    if _operations_rejected_total is None:
        _operations_rejected_total = _safe_counter(
            "ledger_operations_rejected_total", "Ledger operations rejected", ["operation", "reason"]
        )
    return _operations_rejected_total


def get_services_registered_total():
    global _services_registered_total
    if _services_registered_total is None:
        _services_registered_total = _safe_counter("services_registered_total", "Services registered", [])
    return _services_registered_total


def get_subscriptions_total():
    global _subscriptions_total
    if _subscriptions_total is None:
        _subscriptions_total = _safe_counter("subscriptions_total", "Subscriptions purchased", [])
    return _subscriptions_total


def get_api_calls_total():
    """Counter: metered API calls, labeled by service id."""
    global _api_calls_total
    if _api_calls_total is None:
        _api_calls_total = _safe_counter("api_calls_total", "Metered API calls", ["service_id"])
    return _api_calls_total


def get_provider_payments_total():
    global _provider_payments_total
    if _provider_payments_total is None:
        _provider_payments_total = _safe_counter(
            "provider_payments_total", "Currency units paid out to providers", []
        )
    return _provider_payments_total


def get_platform_fees_retained_total():
    global _platform_fees_retained_total
    if _platform_fees_retained_total is None:
        _platform_fees_retained_total = _safe_counter(
            "platform_fees_retained_total", "Platform fee units retained by the ledger", []
        )
    return _platform_fees_retained_total


def get_platform_fees_withdrawn_total():
    global _platform_fees_withdrawn_total
    if _platform_fees_withdrawn_total is None:
        _platform_fees_withdrawn_total = _safe_counter(
            "platform_fees_withdrawn_total", "Platform fee units withdrawn by the owner", []
        )
    return _platform_fees_withdrawn_total


def get_refunds_total():
    global _refunds_total
    if _refunds_total is None:
        _refunds_total = _safe_counter("refunds_total", "Overpayment units refunded to consumers", [])
    return _refunds_total


def get_retained_balance():
    global _retained_balance
    if _retained_balance is None:
        _retained_balance = _safe_gauge("ledger_retained_balance", "Platform fees held by the ledger")
    return _retained_balance


def record_operation(operation: str) -> None:
    try:
        get_operations_total().labels(operation).inc()
    except Exception:
        pass


def record_rejection(operation: str, reason: str) -> None:
    try:
        get_operations_rejected_total().labels(operation, reason).inc()
    except Exception:
        pass


def set_retained_balance(balance: int) -> None:
    try:
        get_retained_balance().set(float(balance))
    except Exception:
        # Metrics are optional in constrained environments
        pass


def start_exporter(port: int) -> Optional[int]:
    """Expose the ledger metrics over HTTP; returns the bound port.

    A busy or forbidden port leaves the ledger running without an exporter.
    """
    if os.getenv("DISABLE_PROMETHEUS", "0") == "1":
        return None
    try:
        start_http_server(port)
    except OSError as e:
        log.warning(f"metrics exporter not started on :{port}: {e}")
        return None
    log.info(f"metrics exporter listening on :{port}")
    return port
