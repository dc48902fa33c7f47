"""Creator-side view of which star chains have been opened.

Two triggers feed the same reducer: polling (``refresh_all`` /
``refresh_one``) and the in-process ``chain-opened`` signal. The reducer keeps
whichever row carries the newest timestamp, so a late or duplicated delivery
from either source cannot roll the state back.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from flask import current_app

from backend import parse_datetime
from chains.service import get_chain, list_chains
from errors import NotFound, ValidationError
from extensions import chain_opened

STATUS_FILTERS = ("all", "opened", "unopened")
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_REGISTRY_KEY = "starwish_share_trackers"
_registry_lock = threading.Lock()


class ShareStatusTracker:
    def __init__(self, creator_id: str):
        self.creator_id = creator_id
        self._chains: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._closed = False

    def apply(self, row: Optional[Dict[str, Any]]) -> bool:
        """Merge one chain row; returns True when the local state changed."""
        if self._closed or not row or row.get("creator_id") != self.creator_id:
            return False
        chain_id = row.get("id")
        if not chain_id:
            return False

        with self._lock:
            current = self._chains.get(chain_id)
            if current is not None:
                if _stamp(row) < _stamp(current):
                    return False
                if current.get("is_opened") and not row.get("is_opened"):
                    return False
            merged = dict(current or {})
            merged.update(row)
            if merged == current:
                return False
            self._chains[chain_id] = merged
            return True

    def refresh_all(self) -> int:
        rows = list_chains(self.creator_id, include_wishes=True)
        if self._closed:
            return 0
        fresh_ids = {row["id"] for row in rows}
        with self._lock:
            for stale_id in set(self._chains) - fresh_ids:
                self._chains.pop(stale_id, None)
        return sum(1 for row in rows if self.apply(row))

    def refresh_one(self, chain_id: str) -> Dict[str, Any]:
        row = get_chain(chain_id, creator_id=self.creator_id)
        if not row:
            with self._lock:
                self._chains.pop(chain_id, None)
            raise NotFound("Star chain not found.")
        self.apply(row)
        with self._lock:
            return dict(self._chains.get(chain_id) or row)

    def handle_opened(self, sender, chain=None, **extra) -> None:
        self.apply(chain)

    def connect(self) -> "ShareStatusTracker":
        chain_opened.connect(self.handle_opened)
        return self

    def close(self) -> None:
        self._closed = True
        chain_opened.disconnect(self.handle_opened)

    def chains(self, status: str = "all") -> List[Dict[str, Any]]:
        status = (status or "all").strip().lower()
        if status not in STATUS_FILTERS:
            raise ValidationError(f"Unknown status filter {status!r}.", payload={"error": "invalid_status"})
        with self._lock:
            rows = [dict(row) for row in self._chains.values()]
        if status == "opened":
            rows = [row for row in rows if row.get("is_opened")]
        elif status == "unopened":
            rows = [row for row in rows if not row.get("is_opened")]
        rows.sort(key=lambda row: row.get("created_at") or "", reverse=True)
        return rows

    def counts(self) -> Dict[str, int]:
        with self._lock:
            rows = list(self._chains.values())
        opened = sum(1 for row in rows if row.get("is_opened"))
        return {"all": len(rows), "opened": opened, "unopened": len(rows) - opened}


def tracker_for(creator_id: str) -> ShareStatusTracker:
    """Per-process tracker for a creator, connected to the chain-opened signal on first use.

    The registry keeps at most ``SHARE_TRACKER_LIMIT`` trackers; the least
    recently used one is closed and dropped to make room. A dropped creator
    simply gets a fresh tracker, which the next poll fills again.
    """
    evicted = []
    with _registry_lock:
        registry = current_app.extensions.setdefault(_REGISTRY_KEY, OrderedDict())
        tracker = registry.get(creator_id)
        if tracker is None:
            tracker = ShareStatusTracker(creator_id).connect()
            registry[creator_id] = tracker
        registry.move_to_end(creator_id)
        while len(registry) > _tracker_limit():
            _, stale = registry.popitem(last=False)
            evicted.append(stale)
    for stale in evicted:
        stale.close()
    return tracker


def close_trackers(app) -> None:
    with _registry_lock:
        registry = app.extensions.pop(_REGISTRY_KEY, {})
    for tracker in registry.values():
        tracker.close()


def _tracker_limit() -> int:
    try:
        value = int(current_app.config.get("SHARE_TRACKER_LIMIT", 256))
    except (TypeError, ValueError):
        value = 256
    return max(1, value)


def _stamp(row: Dict[str, Any]) -> datetime:
    for key in ("updated_at", "opened_at", "created_at"):
        value = parse_datetime(row.get(key))
        if value:
            return value
    return _EPOCH
