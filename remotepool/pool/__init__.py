"""Connection pooling - per-host pools and the process-wide registry."""

from remotepool.pool.host_pool import HostPool, ConnectionSlots
from remotepool.pool.registry import Pool, get_pool

__all__ = [
    "HostPool",
    "ConnectionSlots",
    "Pool",
    "get_pool",
]
