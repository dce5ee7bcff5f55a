"""
SSH session primitives on top of paramiko.

Path: remotepool/ssh/session.py

Opens authenticated paramiko clients (directly or through a gateway
channel), loads in-memory private keys, and records the identity a session
was built with so callers can tell when it has gone stale.
"""

import hashlib
import logging
from dataclasses import dataclass
from io import StringIO
from typing import FrozenSet, Optional

import paramiko

from remotepool.core.config import get_config
from remotepool.vault.models import Credential


logger = logging.getLogger(__name__)


def _digest(secret: Optional[str]) -> Optional[str]:
    if secret is None:
        return None
    return hashlib.sha256(secret.encode()).hexdigest()


@dataclass(frozen=True)
class SessionIdentity:
    """
    What a session was built with.

    Secrets are kept as digests so a live connection never holds a second
    plaintext copy of the password or key data. Key material is an
    unordered set.
    """
    host: str
    port: int
    user: str
    password: Optional[str]
    keys: FrozenSet[str]

    @classmethod
    def build(cls, host: str, port: int, credential: Credential) -> "SessionIdentity":
        keys = set()
        if credential.private_key:
            keys.add(f"path:{credential.private_key}")
        key_data = credential.private_key_data
        if key_data:
            keys.add(f"data:{_digest(key_data)}")
        return cls(
            host=host,
            port=port,
            user=credential.user,
            password=_digest(credential.password),
            keys=frozenset(keys),
        )

    def same_credential(self, credential: Credential) -> bool:
        """Whether a credential matches the one this session was built with."""
        current = SessionIdentity.build(self.host, self.port, credential)
        return (
            current.user == self.user
            and current.password == self.password
            and current.keys == self.keys
        )


def load_private_key(key_data: str) -> paramiko.PKey:
    """
    Parse private key material held in memory.

    Supports Ed25519, RSA and ECDSA keys. The key never touches disk.

    Raises:
        ValueError: Key material could not be parsed.
    """
    key_types = [
        ("Ed25519", paramiko.Ed25519Key),
        ("RSA", paramiko.RSAKey),
        ("ECDSA", paramiko.ECDSAKey),
    ]

    last_exception = None

    for key_name, key_class in key_types:
        try:
            pkey = key_class.from_private_key(StringIO(key_data))
            logger.debug(f"Loaded {key_name} key from memory")
            return pkey
        except paramiko.PasswordRequiredException:
            raise ValueError("Private key requires a passphrase")
        except paramiko.SSHException as e:
            # Key might be a different type, keep trying
            last_exception = e
            continue

    raise ValueError(
        "Could not load private key. "
        "Make sure it's a valid RSA, ECDSA, or Ed25519 key. "
        f"Last error: {last_exception}"
    )


def connect_params(host: str, port: int, credential: Credential, sock=None, timeout: Optional[int] = None) -> dict:
    """Build paramiko.SSHClient.connect() keyword arguments."""
    config = get_config()
    timeout = timeout or config.connection.connect_timeout

    params = {
        "hostname": host,
        "port": port,
        "username": credential.user,
        "timeout": timeout,
        "auth_timeout": timeout,
        "banner_timeout": timeout,
        "allow_agent": False,
        "look_for_keys": False,
        "compress": False,
    }

    password = credential.password
    if password:
        params["password"] = password
    if credential.private_key:
        params["key_filename"] = credential.private_key
    key_data = credential.private_key_data
    if key_data:
        params["pkey"] = load_private_key(key_data)
    if sock is not None:
        params["sock"] = sock

    return params


def open_session(host: str, port: int, credential: Credential, sock=None) -> paramiko.SSHClient:
    """
    Open an authenticated SSH client.

    Args:
        host: Remote host.
        port: Remote port.
        credential: Credential to authenticate with.
        sock: Optional already-open channel (gateway tunnel) to run over.

    Returns:
        Connected paramiko.SSHClient with keepalive enabled.
    """
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    try:
        client.connect(**connect_params(host, port, credential, sock=sock))
    except Exception:
        client.close()
        raise

    transport = client.get_transport()
    if transport is not None:
        transport.set_keepalive(get_config().connection.keepalive_interval)

    return client


def open_tunnel(gateway: paramiko.SSHClient, host: str, port: int) -> paramiko.Channel:
    """Open a direct-tcpip channel through a gateway client to host:port."""
    transport = gateway.get_transport()
    if transport is None or not transport.is_active():
        raise paramiko.SSHException("SSH session not active")
    return transport.open_channel("direct-tcpip", (host, port), ("127.0.0.1", 0))


def is_active(client: Optional[paramiko.SSHClient]) -> bool:
    """Whether a client has a live transport."""
    if client is None:
        return False
    transport = client.get_transport()
    return transport is not None and transport.is_active()
