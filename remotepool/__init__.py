"""
remotepool - Pooled, credentialed, retrying remote execution over SSH and WinRM.

Usage:
    import remotepool

    remotepool.get_auth().add_store(remotepool.EnvironmentStore())

    web = remotepool.connect("web01")
    print(web.run("hostname").stdout)
    web.upload("app.conf", "/etc/app.conf", sudo=True, owner="root", mode="0644")

    remotepool.reap()
"""

__version__ = "0.1.0"

from remotepool.core.config import Config, get_config
from remotepool.core.errors import (
    RemotePoolError,
    AuthenticationError,
    HostTypeDeterminationError,
    InvalidMetadataKey,
    MissingCredential,
    MissingOverride,
    MissingSudoPassword,
    PoolTimeout,
    PtyError,
    ResultError,
)
from remotepool.core.log import configure_logging
from remotepool.core.probe import port_open, host_type
from remotepool.core.result import Result
from remotepool.vault import (
    Credential,
    CredentialStore,
    MemoryStore,
    EnvironmentStore,
    CallbackStore,
    Auth,
    get_auth,
)
from remotepool.ssh import SSHConnection, GatewayConnection
from remotepool.winrm import WinRMConnection
from remotepool.pool import HostPool, Pool, get_pool


def connect(host: str, **options) -> HostPool:
    """
    Get the host pool for a host from the process-wide registry.

    Args:
        host: Remote host.
        options: proto ("ssh" or "winrm"), port, size, timeout, auth and
                 metadata such as gateway_host.
    """
    return get_pool().connect(host, **options)


def count() -> int:
    """Number of host pools in the process-wide registry."""
    return get_pool().count()


def reap() -> int:
    """Remove expired host pools. Returns the number removed."""
    return get_pool().reap()


def clear() -> int:
    """Remove all host pools. Returns the number removed."""
    return get_pool().clear()


__all__ = [
    # Version
    "__version__",
    # Registry
    "connect",
    "count",
    "reap",
    "clear",
    "port_open",
    "host_type",
    "HostPool",
    "Pool",
    "get_pool",
    # Config / logging
    "Config",
    "get_config",
    "configure_logging",
    # Credentials
    "Credential",
    "CredentialStore",
    "MemoryStore",
    "EnvironmentStore",
    "CallbackStore",
    "Auth",
    "get_auth",
    # Connections
    "SSHConnection",
    "GatewayConnection",
    "WinRMConnection",
    "Result",
    # Errors
    "RemotePoolError",
    "AuthenticationError",
    "HostTypeDeterminationError",
    "InvalidMetadataKey",
    "MissingCredential",
    "MissingOverride",
    "MissingSudoPassword",
    "PoolTimeout",
    "PtyError",
    "ResultError",
]
