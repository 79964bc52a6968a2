"""
Per-novel advisory leases.

At most one validate-and-commit cycle may run against a novel at a time.
A caller acquires a lease on the slug, either waiting for a bounded time or
failing fast with ConflictError. Leases carry a time-to-live so a crashed
holder cannot block a novel forever; an expired lease may be taken over, and
the previous holder finds out through Lease.ensure_held() before it writes.

Leases are held in process memory. Multiple worker processes sharing one
storage backend need an external lock instead.
"""

import threading
import time
import uuid
import logging
from contextlib import contextmanager
from typing import Dict, Optional, Iterator

from .errors import ConflictError

logger = logging.getLogger(__name__)

DEFAULT_LEASE_TTL = 300.0


class Lease:
    """A granted lease on one novel slug."""

    def __init__(self, manager: "NovelLockManager", slug: str, token: str, expires_at: float):
        self._manager = manager
        self.slug = slug
        self.token = token
        self.expires_at = expires_at

    @property
    def held(self) -> bool:
        return self._manager.is_held(self.slug, self.token)

    def ensure_held(self) -> None:
        """
        Verify the lease is still ours.

        Raises:
            ConflictError: If the lease expired and another caller took it over
        """
        if not self.held:
            raise ConflictError(
                self.slug,
                f"Lease on novel '{self.slug}' expired or was taken over; aborting write."
            )

    def release(self) -> None:
        self._manager.release(self)

    def __repr__(self) -> str:
        return f"Lease({self.slug!r}, token={self.token[:8]})"


class NovelLockManager:
    """Grants and tracks per-slug leases."""

    def __init__(self, default_ttl: float = DEFAULT_LEASE_TTL, clock=time.monotonic):
        """
        Args:
            default_ttl: Lease lifetime in seconds when acquire() gets no ttl
            clock: Monotonic time source (injectable for tests)
        """
        self.default_ttl = default_ttl
        self._clock = clock
        self._cond = threading.Condition()
        self._leases: Dict[str, Lease] = {}

    def _live_lease(self, slug: str) -> Optional[Lease]:
        lease = self._leases.get(slug)
        if lease is not None and lease.expires_at <= self._clock():
            logger.warning(f"Lease {lease!r} on '{slug}' expired")
            del self._leases[slug]
            return None
        return lease

    def acquire(self, slug: str, wait_timeout: float = 0.0, ttl: Optional[float] = None) -> Lease:
        """
        Acquire the lease for a slug.

        Args:
            slug: Novel slug
            wait_timeout: Seconds to wait for a busy slug; 0 fails immediately
            ttl: Lease lifetime in seconds

        Returns:
            The granted Lease

        Raises:
            ConflictError: If the slug is still leased when the wait runs out
        """
        ttl = ttl if ttl is not None else self.default_ttl
        deadline = self._clock() + wait_timeout
        with self._cond:
            while self._live_lease(slug) is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    logger.info(f"Lease conflict on novel '{slug}'")
                    raise ConflictError(slug)
                self._cond.wait(timeout=remaining)
            lease = Lease(self, slug, uuid.uuid4().hex, self._clock() + ttl)
            self._leases[slug] = lease
            logger.debug(f"Granted {lease!r}")
            return lease

    def release(self, lease: Lease) -> None:
        with self._cond:
            current = self._leases.get(lease.slug)
            if current is not None and current.token == lease.token:
                del self._leases[lease.slug]
                logger.debug(f"Released {lease!r}")
            self._cond.notify_all()

    def is_held(self, slug: str, token: str) -> bool:
        with self._cond:
            lease = self._live_lease(slug)
            return lease is not None and lease.token == token

    def is_locked(self, slug: str) -> bool:
        with self._cond:
            return self._live_lease(slug) is not None

    @contextmanager
    def lease(self, slug: str, wait_timeout: float = 0.0, ttl: Optional[float] = None) -> Iterator[Lease]:
        """Context manager form of acquire()/release()."""
        granted = self.acquire(slug, wait_timeout=wait_timeout, ttl=ttl)
        try:
            yield granted
        finally:
            self.release(granted)
