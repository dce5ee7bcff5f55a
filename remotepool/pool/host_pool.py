"""
Host pool - bounded set of reusable connections to one host.

Path: remotepool/pool/host_pool.py

A HostPool owns up to `size` connections of one protocol to one host.
Connections are created lazily on first borrow and handed out one caller at
a time. Every borrow pushes the pool's expiration deadline forward, so an
actively used pool never expires mid-use.

Arbitrary keyword arguments become pool metadata (for example the gateway
settings read by SSH connections). Metadata keys may not shadow the pool's
own attributes or operations.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Type, Union

from remotepool.core.config import get_config
from remotepool.core.errors import HostTypeDeterminationError, InvalidMetadataKey, PoolTimeout
from remotepool.core.interfaces import Connection
from remotepool.core.naming import to_identifier
from remotepool.core.probe import host_type
from remotepool.core.result import Result
from remotepool.ssh.connection import SSHConnection
from remotepool.vault.auth import Auth, get_auth
from remotepool.vault.models import Credential
from remotepool.winrm.connection import WinRMConnection


logger = logging.getLogger(__name__)


class ConnectionSlots:
    """
    Fixed-capacity, lazily filled set of connections.

    Borrowing blocks up to a timeout for a free slot. reload() closes idle
    connections immediately; connections borrowed at the time are closed
    when returned, and the slots are refilled on demand.
    """

    def __init__(self, size: int, factory: Callable[[], Any]):
        if size < 1:
            raise ValueError(f"Pool size must be at least 1, got {size}")
        self.size = size
        self._factory = factory
        self._idle: List[Any] = []
        self._created = 0
        self._generation = 0
        self._leased: Dict[int, int] = {}
        self._cond = threading.Condition()

    @property
    def created(self) -> int:
        return self._created

    @property
    def idle(self) -> int:
        return len(self._idle)

    def checkout(self, timeout: float) -> Any:
        deadline = time.monotonic() + timeout

        with self._cond:
            while True:
                if self._idle:
                    conn = self._idle.pop()
                    break

                if self._created < self.size:
                    conn = self._factory()
                    self._created += 1
                    break

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PoolTimeout(f"Waited {timeout} seconds for a pooled connection")
                self._cond.wait(remaining)

            self._leased[id(conn)] = self._generation
            return conn

    def checkin(self, conn: Any):
        with self._cond:
            generation = self._leased.pop(id(conn), self._generation)
            stale = generation != self._generation
            if stale:
                self._created -= 1
            else:
                self._idle.append(conn)
            self._cond.notify()

        if stale:
            conn.close()

    @contextmanager
    def lease(self, timeout: float) -> Iterator[Any]:
        conn = self.checkout(timeout)
        try:
            yield conn
        finally:
            self.checkin(conn)

    def reload(self):
        """Close idle connections and retire borrowed ones on return."""
        with self._cond:
            idle = self._idle
            self._idle = []
            self._generation += 1
            self._created = len(self._leased)
            self._cond.notify_all()

        for conn in idle:
            conn.close()


class HostPool:
    """
    Pool of connections to one host under one configuration.

    Usage:
        pool = HostPool("web01", proto="ssh", gateway_host="bastion")
        pool.run("hostname").stdout
        pool.upload("app.conf", "/etc/app.conf", sudo=True, mode="0644")

        with pool.with_connection() as conn:
            conn.run("uptime")
    """

    CONNECTION_TYPES: Dict[str, Type[Connection]] = {
        "ssh": SSHConnection,
        "winrm": WinRMConnection,
    }

    def __init__(
        self,
        host: str,
        size: Optional[int] = None,
        timeout: Optional[int] = None,
        port: Optional[int] = None,
        proto: Optional[str] = None,
        auth: Optional[Auth] = None,
        **metadata,
    ):
        logger.debug(f"Creating host pool for {host}")
        config = get_config().pool

        for key in metadata:
            self._check_metadata_key(key)
        self._metadata: Dict[str, Any] = dict(metadata)

        self.host = host
        self.proto = str(proto).lower() if proto else host_type(host)
        if not self.proto:
            raise HostTypeDeterminationError(f"Could not determine whether to use SSH or WinRM for {host}")

        connection_class = self.CONNECTION_TYPES.get(self.proto)
        if connection_class is None:
            raise ValueError(f"Unsupported protocol {self.proto} for {host}")

        self._port = int(port or connection_class.REMOTE_PORT)
        self.size = int(size if size is not None else config.size)
        self.timeout = int(timeout if timeout is not None else config.timeout)
        self._auth = auth
        self._connections = ConnectionSlots(
            self.size,
            lambda: connection_class(host, self._port, host_pool=self, auth=auth),
        )
        self.expiration_time = time.time() + self.timeout

    @property
    def auth(self) -> Auth:
        return self._auth or get_auth()

    @property
    def port(self) -> int:
        return self._port

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def is_expired(self) -> bool:
        return time.time() >= self.expiration_time

    def expire(self):
        """Force the pool to expire immediately. It stays usable until reaped."""
        logger.debug(f"Expiring {self.proto} host pool {id(self)} ({self.host})")
        self.expiration_time = time.time()

    def close(self):
        """Close every pooled connection; the next borrow rebuilds."""
        logger.debug(f"Closing {self.proto} host pool {id(self)} ({self.host})")
        self._connections.reload()

    @contextmanager
    def with_connection(self, timeout: Optional[int] = None) -> Iterator[Connection]:
        """
        Borrow a connection from the pool.

        Args:
            timeout: Extra seconds added to the expiration deadline; also the
                     borrow wait (default: the pool timeout).

        Raises:
            PoolTimeout: No connection became available in time.
        """
        self.expiration_time = time.time() + self.timeout + int(timeout or 0)
        logger.debug(
            f"Updating {self.proto} host pool {id(self)} ({self.host}) expiration time to {self.expiration_time}"
        )

        with self._connections.lease(timeout if timeout else self.timeout) as conn:
            yield conn

    # =========================================================================
    # Delegated operations
    # =========================================================================

    def port_open(self) -> bool:
        with self.with_connection() as conn:
            return conn.port_open()

    def run(self, command: str, *args, **options) -> Result:
        with self.with_connection() as conn:
            return conn.run(command, *args, **options)

    def run_script(self, local_path: str, remote_path: str, *args, **options) -> Result:
        with self.with_connection() as conn:
            return conn.run_script(local_path, remote_path, *args, **options)

    def upload(self, local_path: str, remote_path: str, **options) -> str:
        with self.with_connection() as conn:
            return conn.upload(local_path, remote_path, **options)

    def download(self, remote_path: str, local_path: Optional[str] = None, **options) -> str:
        with self.with_connection() as conn:
            return conn.download(remote_path, local_path, **options)

    def file_exist(self, remote_path: str, **options) -> bool:
        with self.with_connection() as conn:
            return conn.file_exist(remote_path, **options)

    def credential(self, **options) -> Credential:
        """Resolve the credential a connection in this pool would use."""
        with self.with_connection() as conn:
            return self.auth.credential(conn, **options)

    def set_credential(self, credential: Union[Credential, Mapping[str, Any]]):
        """Cache a credential (or a mapping of credential fields) for this host."""
        if not isinstance(credential, Credential):
            credential = Credential.from_dict(credential)
        self.auth.set_credential(self.host, credential)

    # =========================================================================
    # Metadata
    # =========================================================================

    @property
    def metadata(self) -> Dict[str, Any]:
        """Copy of the pool metadata."""
        return dict(self._metadata)

    def get(self, key: str, default: Any = None) -> Any:
        return self._metadata.get(key, default)

    def set(self, key: str, value: Any):
        self._check_metadata_key(key)
        self._metadata[key] = value

    def __getitem__(self, key: str) -> Any:
        return self._metadata.get(key)

    def __setitem__(self, key: str, value: Any):
        self.set(key, value)

    def __contains__(self, key: str) -> bool:
        return key in self._metadata

    @staticmethod
    def _check_metadata_key(key: str):
        safe_key = to_identifier(key)
        if safe_key in RESERVED_NAMES:
            raise InvalidMetadataKey(f"Cannot use reserved name {safe_key} for a metadata key")

    def __repr__(self) -> str:
        return f"HostPool(host={self.host}, proto={self.proto}, port={self._port}, size={self.size})"


RESERVED_NAMES = frozenset(
    [name for name in dir(HostPool) if not name.startswith("_")]
    + ["host", "proto", "size", "timeout", "expiration_time"]
)
