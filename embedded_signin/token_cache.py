"""
Process-wide in-memory token cache (session id + token kind -> token) with per-entry TTL.
Safe for concurrent requests; a background thread sweeps expired entries so abandoned sessions don't pile up.
Nothing is persisted: a restart forces everyone to log in again.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

# Tokens live 1 hour; sweep every 5 minutes
DEFAULT_TTL = 3600
DEFAULT_SWEEP_INTERVAL = 300


def cache_key(session_id: str, kind: str) -> str:
    return f"{session_id}-{kind}"


@dataclass
class CacheEntry:
    value: str
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class TokenCache:
    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def put(self, key: str, value: str, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                return None
            return entry.value

    def flush(self) -> None:
        """Drop every entry for every session."""
        with self._lock:
            self._entries.clear()

    def flush_session(self, session_id: str) -> int:
        """Drop only the entries belonging to one session. Returns how many were removed."""
        prefix = cache_key(session_id, "")
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for k in keys:
                del self._entries[k]
        return len(keys)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expired(now)]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug("Swept %d expired token cache entries", len(expired))
        return len(expired)

    def start(self) -> None:
        """Run sweep() every sweep_interval seconds on a daemon thread until stop()."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._run_sweeper, name="token-cache-sweeper", daemon=True)
        self._sweeper.start()

    def stop(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    def _run_sweeper(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Token cache sweep failed")
