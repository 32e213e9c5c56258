"""Quota pool: credentials x endpoints, each with a durable usage counter and a hard cap."""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from shared.database import DatabaseManager
from shared.models import EndpointSpec, PoolEntry

logger = logging.getLogger(__name__)


class QuotaPool:
    """
    Owns the (credential, endpoint) entries and their usage accounting.

    Entries are built credential-major in declared endpoint order, which is
    also the preference order. Persisted counters are merged in lazily on
    first use, so constructing a pool never touches the database.
    """

    def __init__(self, database: DatabaseManager, credentials: Iterable[str],
                 endpoint_specs: Iterable[EndpointSpec]):
        self._db = database
        self._lock = threading.RLock()
        self._cursor = 0
        self._loaded = False
        self.entries: List[PoolEntry] = []
        self.initialize(credentials, endpoint_specs)

    def initialize(self, credentials: Iterable[str], endpoint_specs: Iterable[EndpointSpec]) -> None:
        keys = [c.strip() for c in credentials if c and c.strip()]
        specs = list(endpoint_specs)
        with self._lock:
            self.entries = []
            for key_index, key in enumerate(keys):
                for endpoint_index, spec in enumerate(specs):
                    self.entries.append(PoolEntry(
                        credential=key,
                        host=spec.host,
                        endpoint=spec.endpoint,
                        method=spec.method,
                        shape=spec.shape,
                        max_requests=spec.max_requests,
                        key_index=key_index,
                        endpoint_index=endpoint_index,
                    ))
            self._cursor = 0
            self._loaded = False

        if not keys:
            logger.warning("No conversion API keys configured; pool-backed strategy disabled")
        else:
            logger.info(f"Initialized {len(self.entries)} pool entries with {len(keys)} keys")

    def _ensure_loaded(self) -> None:
        """Merge persisted counters into memory once per process."""
        with self._lock:
            if self._loaded:
                return
            if self.entries:
                self._db.ensure_pool_rows(self.entries)
                rows = self._db.load_pool_usage()
                for entry in self.entries:
                    row = rows.get((entry.key_hash, entry.host))
                    if row is None:
                        continue
                    entry.requests_used = int(row["requests_used"])
                    entry.is_active = bool(row["is_active"]) and not entry.is_exhausted
            self._loaded = True

    def select_entry(self, exclude: Iterable[PoolEntry] = ()) -> Optional[PoolEntry]:
        """
        First usable entry scanning the ring from the rotating cursor.

        Returns None when the full ring yields nothing; that is not an error,
        the strategy is simply unavailable.
        """
        self._ensure_loaded()
        skipped = {id(e) for e in exclude}
        with self._lock:
            count = len(self.entries)
            for i in range(count):
                entry = self.entries[(self._cursor + i) % count]
                if id(entry) in skipped:
                    continue
                if entry.is_usable:
                    return entry
        if self.entries:
            logger.warning("All pool entries have exceeded their limits or are inactive")
        return None

    def has_available(self) -> bool:
        return self.select_entry() is not None

    def record_outcome(self, entry: PoolEntry, success: bool) -> None:
        """Account for one attempt and persist it immediately."""
        self._ensure_loaded()
        if not success:
            self._db.record_pool_failure(entry.key_hash, entry.host)
            return

        applied, used, active = self._db.increment_pool_usage(entry.key_hash, entry.host)
        with self._lock:
            entry.requests_used = max(entry.requests_used, used)
            entry.is_active = active and not entry.is_exhausted
            if not applied:
                logger.warning(
                    f"{entry.host} (key {entry.key_index + 1}) served a request past its cap "
                    f"({entry.requests_used}/{entry.max_requests})"
                )
            limit = "unlimited" if entry.is_unlimited else entry.max_requests
            logger.info(f"API key {entry.host} usage: {entry.requests_used}/{limit}")
            if not entry.is_active:
                logger.info(f"API key {entry.host} limit reached, switching to next entry")
                self._advance_past(entry)

    def _advance_past(self, entry: PoolEntry) -> None:
        index = next((i for i, e in enumerate(self.entries) if e is entry), None)
        if index is not None and index == self._cursor % len(self.entries):
            self._cursor = (index + 1) % len(self.entries)

    def reset_usage(self, host: Optional[str] = None) -> int:
        """Zero counters and reactivate entries, for every host or one. Returns entries reset."""
        self._ensure_loaded()
        self._db.reset_pool_usage(host)
        reset = 0
        with self._lock:
            for entry in self.entries:
                if host is None or entry.host == host:
                    entry.requests_used = 0
                    entry.is_active = True
                    reset += 1
            self._cursor = 0
        logger.info(f"Reset usage for {reset} pool entries" + (f" on {host}" if host else ""))
        return reset

    def status(self) -> Dict[str, Any]:
        self._ensure_loaded()
        with self._lock:
            apis = [entry.to_status() for entry in self.entries]
        limited = [a for a in apis if not a["is_unlimited"]]
        return {
            "apis": apis,
            "total_apis": len(apis),
            "active_apis": sum(1 for a in apis if a["is_active"]),
            "total_requests_used": sum(a["requests_used"] for a in apis),
            "total_requests_remaining": sum(a["remaining"] for a in limited),
            "has_unlimited": len(limited) != len(apis),
        }
