from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

from ..metrics.market import _safe_counter


def _get_append_counters():
    app = _safe_counter("journal_appends_total", "Journal records appended", ["event"])
    err = _safe_counter("journal_errors_total", "Journal append errors", ["reason"])
    return app, err


REQUIRED_KEYS = {"ts", "event", "actor", "subject", "outcome"}


def validate_record(rec: Dict[str, Any]) -> List[str]:
    return sorted(k for k in REQUIRED_KEYS if k not in rec)


def append_jsonl(path: str, rec: Dict[str, Any]) -> bool:
    """Append one audit record to a JSONL journal. Returns False if it was not written."""
    app, err = _get_append_counters()
    missing = validate_record(rec)
    if missing:
        err.labels("missing_fields").inc()
        return False
    parent = os.path.dirname(path)
    try:
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False, default=str) + "\n")
    except OSError:
        err.labels("io_error").inc()
        logging.getLogger("marketsim.journal").warning("journal append failed: %s", path)
        return False
    app.labels(str(rec["event"])).inc()
    return True


def log_market_event(
    event: str,
    component: str,
    severity: str = "INFO",
    ts: Optional[int] = None,
    **fields: Any,
) -> None:
    """Emit a structured single-line JSON log for a marketplace event.

    Keys: event, component, severity, ts, schema_version, plus any extra fields.
    """
    try:
        logger = logging.getLogger(f"marketsim.{component}")
        payload: Dict[str, Any] = {
            "event": str(event),
            "component": str(component),
            "severity": severity,
            "ts": int(ts if ts is not None else int(time.time() * 1000)),
            "schema_version": "v1",
        }
        payload.update(fields)
        line = json.dumps(payload, separators=(",", ":"), default=str)
        if severity == "WARNING":
            logger.warning(line)
        elif severity == "ERROR":
            logger.error(line)
        else:
            logger.info(line)
    except Exception:
        # Logging must never throw
        pass
