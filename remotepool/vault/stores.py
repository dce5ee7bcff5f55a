"""
Credential stores.

A store answers one question: which credential should be used for this
target? Targets are connections (or anything with a host attribute and a
get() metadata accessor). Stores are consulted in order by the Auth resolver.
"""

import logging
import os
from typing import Any, Callable, Dict, Mapping, Optional

from remotepool.core.errors import MissingOverride
from remotepool.core.naming import to_identifier
from remotepool.vault.models import Credential


logger = logging.getLogger(__name__)


class CredentialStore:
    """Base class for credential stores."""

    def credential(self, target, **options) -> Optional[Credential]:
        """
        Retrieve the credential for a target.

        Must be overridden in derived classes.

        Raises:
            MissingOverride: Always, in the base class.
        """
        raise MissingOverride(
            f"credential method not implemented in credential store {type(self).__name__}"
        )

    def user(self, target, **options) -> Optional[str]:
        """User name for a target, or None."""
        cred = self.credential(target, **options)
        return cred.user if cred else None

    def password(self, target, **options) -> Optional[str]:
        """Password for a target, or None."""
        cred = self.credential(target, **options)
        return cred.password if cred else None

    def __str__(self) -> str:
        return type(self).__name__


class MemoryStore(CredentialStore):
    """
    Map-backed store that requires credentials to be added manually.

    Usage:
        store = MemoryStore()
        store.add("web01", Credential("deploy", "secret"))
        auth.stores = [store]
    """

    def __init__(self, credentials: Optional[Mapping[str, Credential]] = None):
        self._store: Dict[str, Credential] = {}
        for host, cred in (credentials or {}).items():
            self.add(host, cred)

    @staticmethod
    def _key(target) -> str:
        host = target if isinstance(target, str) else target.host
        return host.lower()

    def credential(self, target, **options) -> Optional[Credential]:
        return self._store.get(self._key(target))

    def add(self, target, credential: Credential):
        """Add a credential for a host name or target."""
        self._store[self._key(target)] = credential

    def remove(self, target) -> Optional[Credential]:
        """Remove and return the credential for a host name or target."""
        return self._store.pop(self._key(target), None)

    def __len__(self) -> int:
        return len(self._store)


class EnvironmentStore(CredentialStore):
    """
    Reads credentials from environment variables.

    Host-specific variables take precedence over the generic ones:

        REMOTEPOOL_WEB01_USER / REMOTEPOOL_USER
        REMOTEPOOL_WEB01_PASSWORD / REMOTEPOOL_PASSWORD
        REMOTEPOOL_WEB01_KEY / REMOTEPOOL_KEY            (private key path)
        REMOTEPOOL_WEB01_KEY_DATA / REMOTEPOOL_KEY_DATA  (private key PEM)

    The host part is the host name folded to an upper-case identifier
    ("web-01.example.com" -> "WEB01EXAMPLECOM").
    """

    FIELDS = {
        "user": "USER",
        "password": "PASSWORD",
        "private_key": "KEY",
        "private_key_data": "KEY_DATA",
    }

    def __init__(self, prefix: str = "REMOTEPOOL_", environ: Optional[Mapping[str, str]] = None):
        self.prefix = prefix
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def _lookup(self, host_part: str, suffix: str) -> Optional[str]:
        env = self.environ
        value = env.get(f"{self.prefix}{host_part}_{suffix}") if host_part else None
        if value is None:
            value = env.get(f"{self.prefix}{suffix}")
        return value

    def credential(self, target, **options) -> Optional[Credential]:
        host_part = to_identifier(target.host).upper()
        values = {name: self._lookup(host_part, suffix) for name, suffix in self.FIELDS.items()}

        if not values["user"]:
            return None

        if values["private_key"]:
            values["private_key"] = os.path.expanduser(values["private_key"])

        logger.debug(f"Found environment credential for {target.host}")
        return Credential.from_dict(values)


class CallbackStore(CredentialStore):
    """
    Adapts a plain callable into a store.

    Usage:
        def lookup(target, **options):
            return vault.get(target.host)

        auth.add_store(CallbackStore(lookup, name="vault"))
    """

    def __init__(self, callback: Callable[..., Optional[Credential]], name: Optional[str] = None):
        self._callback = callback
        self.name = name or getattr(callback, "__name__", "callback")

    def credential(self, target, **options: Any) -> Optional[Credential]:
        return self._callback(target, **options)

    def __str__(self) -> str:
        return f"CallbackStore({self.name})"
