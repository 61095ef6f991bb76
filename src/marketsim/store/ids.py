"""Order id generation.

Ids are `<prefix><6-digit counter>` (e.g. `TX000042`), issued from a
lock-guarded counter. `observe` moves the counter past ids that already
exist, so a marketplace restored from disk never reissues one.
"""

from __future__ import annotations

import re
import threading


class OrderIdGenerator:
    def __init__(self, prefix: str = "TX", start: int = 1, width: int = 6) -> None:
        if not prefix or any(ch in prefix for ch in "|,\r\n"):
            raise ValueError(f"invalid order id prefix: {prefix!r}")
        self.prefix = prefix
        self.width = width
        self._next = start
        self._lock = threading.Lock()
        self._pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")

    def next_id(self) -> str:
        with self._lock:
            value = self._next
            self._next += 1
        return f"{self.prefix}{value:0{self.width}d}"

    def observe(self, existing_id: str) -> None:
        m = self._pattern.match(existing_id)
        if not m:
            return
        with self._lock:
            self._next = max(self._next, int(m.group(1)) + 1)
