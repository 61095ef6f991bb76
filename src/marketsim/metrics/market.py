"""Prometheus collectors for the marketplace and its ledger.

Collectors are created lazily and tolerate re-registration (tests import
modules more than once). `DISABLE_PROMETHEUS=1` swaps every collector for a
no-op so constrained runs never touch the default registry.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from prometheus_client import Counter, Gauge, REGISTRY, start_http_server

_purchases_total: Optional[Counter] = None
_sales_value_total: Optional[Counter] = None
_ledger_entries_total: Optional[Counter] = None
_ledger_rejections_total: Optional[Counter] = None
_persistence_ops_total: Optional[Counter] = None
_events_total: Optional[Counter] = None
_open_accounts: Optional[Gauge] = None


class _NoOp:
    def labels(self, *args, **kwargs):
        return self
    def inc(self, *args, **kwargs):
        return None
    def set(self, *args, **kwargs):
        return None


def _existing_collector(name: str):
    coll = getattr(REGISTRY, "_names_to_collectors", {}).get(name)
    if coll is not None:
        return coll
    for coll in list(getattr(REGISTRY, "_collector_to_names", {}).keys()):
        if getattr(coll, "_name", None) == name:
            return coll
    return None


def _safe_counter(name: str, doc: str, labelnames=()):
    if os.getenv("DISABLE_PROMETHEUS", "0") == "1":
        return _NoOp()
    try:
        return Counter(name, doc, labelnames)
    except ValueError:
        coll = _existing_collector(name)
        return coll if coll is not None else _NoOp()


def _safe_gauge(name: str, doc: str, labelnames=()):
    if os.getenv("DISABLE_PROMETHEUS", "0") == "1":
        return _NoOp()
    try:
        return Gauge(name, doc, labelnames)
    except ValueError:
        coll = _existing_collector(name)
        return coll if coll is not None else _NoOp()


def get_purchases_total():
    """Counter: purchases_total{outcome} where outcome is "settled" or a failure reason."""
    global _purchases_total
    if _purchases_total is None:
        _purchases_total = _safe_counter("purchases_total", "Purchase attempts by outcome", ["outcome"])
    return _purchases_total


def get_sales_value_total():
    global _sales_value_total
    if _sales_value_total is None:
        _sales_value_total = _safe_counter("sales_value_total", "Settled purchase value")
    return _sales_value_total


def get_ledger_entries_total():
    global _ledger_entries_total
    if _ledger_entries_total is None:
        _ledger_entries_total = _safe_counter(
            "ledger_entries_total", "Ledger entries appended", ["direction"]
        )
    return _ledger_entries_total


def get_ledger_rejections_total():
    global _ledger_rejections_total
    if _ledger_rejections_total is None:
        _ledger_rejections_total = _safe_counter(
            "ledger_rejections_total", "Ledger operations rejected", ["reason"]
        )
    return _ledger_rejections_total


def get_persistence_ops_total():
    """Counter: persistence_ops_total{op,status} with op in save|load."""
    global _persistence_ops_total
    if _persistence_ops_total is None:
        _persistence_ops_total = _safe_counter(
            "persistence_ops_total", "Save/load operations", ["op", "status"]
        )
    return _persistence_ops_total


def get_events_total():
    global _events_total
    if _events_total is None:
        _events_total = _safe_counter("events_total", "Marketplace events", ["type"])
    return _events_total


def get_open_accounts():
    global _open_accounts
    if _open_accounts is None:
        _open_accounts = _safe_gauge("open_accounts", "Ledger accounts currently open")
    return _open_accounts


def inc_purchase(outcome: str) -> None:
    try:
        get_purchases_total().labels(outcome).inc()
    except Exception:
        pass


def start_server_safe(port: int) -> Optional[int]:
    """Start the Prometheus HTTP exporter; return the port or None if it failed.

    Logs a warning and continues when the port cannot be bound.
    """
    try:
        start_http_server(port)
        logging.info(f"Prometheus metrics server started on :{port}")
        return port
    except OSError as e:
        logging.warning(f"Failed to start Prometheus server on :{port}: {e}")
        return None
