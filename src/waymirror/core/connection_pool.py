"""
Connection Pool

Keeps one keep-alive HTTP session per active worker thread so that every
worker reuses its own connection to the archive. Sessions are age-limited and
swept by a background maintenance thread; shutdown() releases everything.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, Optional, TypeVar

import requests

from waymirror import __version__


CONNECTION_POOL_SIZE = 10
MAX_CONNECTION_AGE = 300.0
SWEEP_INTERVAL = 60.0

USER_AGENT = f"waymirror/{__version__} (Wayback Machine Site Mirror)"

T = TypeVar("T")


def default_session_factory() -> requests.Session:
    session = requests.Session()
    session.headers.update({
        'User-Agent': USER_AGENT,
        'Accept-Encoding': 'gzip, deflate',
        'Connection': 'keep-alive',
    })
    return session


@dataclass
class ConnectionLease:
    """A live session bound to one worker slot."""
    session: requests.Session
    slot: int
    created_at: float = field(default_factory=time.monotonic)
    closed: bool = False

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.created_at

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.session.close()


class ConnectionPool:
    """
    Per-worker session pool with lease acquire/release.

    Each worker thread owns at most one session. A lease is created lazily,
    reused while it is alive and younger than max_age, and dropped when the
    work running on it raises.
    """

    def __init__(self,
                 capacity: int = CONNECTION_POOL_SIZE,
                 max_age: float = MAX_CONNECTION_AGE,
                 sweep_interval: float = SWEEP_INTERVAL,
                 session_factory: Callable[[], requests.Session] = default_session_factory):
        self.capacity = capacity
        self.max_age = max_age
        self.sweep_interval = sweep_interval
        self.session_factory = session_factory
        self.logger = logging.getLogger(__name__)

        self._leases: Dict[int, ConnectionLease] = {}
        self._in_use: Dict[int, bool] = {}
        self._lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(capacity)
        self._stop_event = threading.Event()
        self._shutdown_done = False
        self._sweeper = threading.Thread(target=self._sweep_loop, name="connection-sweeper", daemon=True)
        self._sweeper.start()

    @contextmanager
    def connection(self) -> Iterator[requests.Session]:
        """Lease the calling worker's session for the duration of the block."""
        if self._stop_event.is_set():
            raise RuntimeError("Connection pool has been shut down")

        slot = threading.get_ident()
        self._slots.acquire()
        try:
            lease = self._acquire(slot)
            try:
                yield lease.session
            except BaseException:
                self._retire(slot, lease)
                raise
            else:
                self._release(slot)
        finally:
            self._slots.release()

    def with_connection(self, work: Callable[[requests.Session], T]) -> T:
        """Run work(session) on a leased session."""
        with self.connection() as session:
            return work(session)

    def _acquire(self, slot: int) -> ConnectionLease:
        with self._lock:
            lease = self._leases.get(slot)
            if lease is not None and (lease.closed or lease.age() > self.max_age):
                self.logger.debug(f"Recycling connection for worker {slot} (age {lease.age():.0f}s)")
                lease.close()
                lease = None
            if lease is None:
                lease = ConnectionLease(session=self.session_factory(), slot=slot)
                self._leases[slot] = lease
            self._in_use[slot] = True
            return lease

    def _release(self, slot: int) -> None:
        with self._lock:
            self._in_use[slot] = False

    def _retire(self, slot: int, lease: ConnectionLease) -> None:
        with self._lock:
            lease.close()
            if self._leases.get(slot) is lease:
                del self._leases[slot]
            self._in_use.pop(slot, None)

    def sweep(self) -> int:
        """Close idle sessions past max age. Returns how many were closed."""
        closed = 0
        now = time.monotonic()
        with self._lock:
            for slot, lease in list(self._leases.items()):
                if self._in_use.get(slot):
                    continue
                if lease.closed or lease.age(now) > self.max_age:
                    lease.close()
                    del self._leases[slot]
                    self._in_use.pop(slot, None)
                    closed += 1
        if closed:
            self.logger.debug(f"Swept {closed} expired connection(s)")
        return closed

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval):
            self.sweep()

    def active_count(self) -> int:
        with self._lock:
            return len(self._leases)

    def shutdown(self) -> None:
        """Stop the sweeper and force-close every pooled session."""
        with self._lock:
            if self._shutdown_done:
                return
            self._shutdown_done = True
            self._stop_event.set()
            leases = list(self._leases.values())
            self._leases.clear()
            self._in_use.clear()

        for lease in leases:
            try:
                lease.close()
            except Exception as e:
                self.logger.warning(f"Error closing connection for worker {lease.slot}: {e}")

        if self._sweeper.is_alive() and self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=5)
        self.logger.info(f"Connection pool shut down ({len(leases)} connection(s) closed)")

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
