"""
Pool registry - process-wide map of host name to HostPool.

Path: remotepool/pool/registry.py

connect() returns the current HostPool for a host, building one on first
use. When the requested options differ from the live pool's configuration,
the live pool is expired and replaced; callers still holding it can keep
using it, it is simply no longer handed out.

Mutations (create, expire, reap, clear) are serialized by one lock. Looking
up an unchanged pool does not take the lock.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional

from remotepool.pool.host_pool import HostPool
from remotepool.vault.auth import Auth


logger = logging.getLogger(__name__)

# Options compared against HostPool attributes rather than metadata
POOL_ATTRIBUTES = ("proto", "port", "size", "timeout")


class Pool:
    """
    Registry of host pools.

    Usage:
        pool = Pool()
        web = pool.connect("web01", proto="ssh")
        pool.reap()
    """

    def __init__(self, auth: Optional[Auth] = None, host_pool_factory: Callable[..., HostPool] = HostPool):
        self._auth = auth
        self._factory = host_pool_factory
        self._pools: Dict[str, HostPool] = {}
        self._lock = threading.Lock()

    def connect(self, host: str, auth: Optional[Auth] = None, **options) -> HostPool:
        """
        Get the host pool for a host, creating or replacing it as needed.

        Args:
            host: Remote host.
            auth: Resolver for this host (default: the registry's own).
            options: proto, port, size, timeout and any metadata.

        Returns:
            HostPool for the host and options.
        """
        logger.debug(f"Getting host pool for {host}")

        existing = self._pools.get(host)
        if existing is not None and not self._changed(existing, auth, options):
            return existing

        with self._lock:
            current = self._pools.get(host)
            if current is not None:
                if not self._changed(current, auth, options):
                    return current
                logger.debug(f"Host pool for {host} has changed, expiring {id(current)}")
                current.expire()

            self._reap()

            host_pool = self._factory(host, auth=auth or self._auth, **options)
            self._pools[host] = host_pool
            return host_pool

    def count(self) -> int:
        """Number of host pools currently registered."""
        return len(self._pools)

    def reap(self) -> int:
        """Remove expired host pools. Returns the number removed."""
        with self._lock:
            return self._reap()

    def clear(self) -> int:
        """Close and remove all host pools. Returns the number removed."""
        with self._lock:
            logger.debug("Removing all host pools")
            pools = list(self._pools.values())
            self._pools = {}

        for host_pool in pools:
            host_pool.close()
        return len(pools)

    def get(self, host: str) -> Optional[HostPool]:
        return self._pools.get(host)

    def _reap(self) -> int:
        logger.debug("Reaping expired host pools")
        expired = [host for host, host_pool in self._pools.items() if host_pool.is_expired()]
        if expired:
            self._pools = {h: p for h, p in self._pools.items() if h not in expired}

        logger.debug(f"Reaped {len(expired)} expired host pools")
        return len(expired)

    @staticmethod
    def _changed(host_pool: HostPool, auth: Optional[Auth], options: Dict[str, Any]) -> bool:
        if auth is not None and host_pool.auth is not auth:
            logger.debug("Credential resolver differs, host pool has changed")
            return True

        for key, value in options.items():
            if key in POOL_ATTRIBUTES:
                if value is None:
                    continue
                current = getattr(host_pool, key)
                if key == "proto":
                    value = str(value).lower()
            else:
                current = host_pool.get(key)

            if value != current:
                logger.debug(f"Option {key} value {current} differs from {value}, host pool has changed")
                return True

        return False


# Process-wide registry, created on first use
_pool: Optional[Pool] = None
_pool_lock = threading.Lock()


def get_pool() -> Pool:
    """Get the process-wide Pool registry."""
    global _pool

    if _pool is None:
        with _pool_lock:
            if _pool is None:
                _pool = Pool()

    return _pool
