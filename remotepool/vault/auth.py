"""
Auth resolver - credential lookup and caching.

Path: remotepool/vault/auth.py

Resolves the credential for a target by checking an in-memory cache and
then an ordered chain of credential stores. Every successful store lookup
is written through to the cache. The cache is process-wide by default
(get_auth()) but an Auth instance can be created and injected anywhere a
connection or pool accepts one.
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional

from remotepool.core.errors import MissingCredential
from remotepool.core.interfaces import Target
from remotepool.vault.models import Credential
from remotepool.vault.stores import CredentialStore


logger = logging.getLogger(__name__)


class Auth:
    """
    Credential resolver with a host-keyed cache.

    Usage:
        auth = Auth(stores=[MemoryStore({"web01": Credential("deploy", "pw")})])
        cred = auth.credential(connection)
    """

    def __init__(self, stores: Optional[Iterable[CredentialStore]] = None):
        self._stores: List[CredentialStore] = list(stores or [])
        self._cache: Dict[str, Credential] = {}
        self._lock = threading.RLock()

    @property
    def stores(self) -> List[CredentialStore]:
        return list(self._stores)

    @stores.setter
    def stores(self, stores: Iterable[CredentialStore]):
        with self._lock:
            self._stores = list(stores)

    def add_store(self, store: CredentialStore):
        """Append a store to the end of the lookup chain."""
        with self._lock:
            self._stores.append(store)

    @property
    def cache(self) -> Dict[str, Credential]:
        """Snapshot of the credential cache."""
        with self._lock:
            return dict(self._cache)

    def cached(self, host: str) -> Optional[Credential]:
        return self._cache.get(host)

    def set_credential(self, host: str, credential: Credential):
        """Place a credential in the cache for a host."""
        with self._lock:
            self._cache[host] = credential

    def evict(self, host: str) -> Optional[Credential]:
        """Remove a host's cached credential, forcing store lookup next time."""
        with self._lock:
            return self._cache.pop(host, None)

    def clear_cache(self) -> int:
        """Remove all cached credentials. Returns the number removed."""
        with self._lock:
            count = len(self._cache)
            self._cache = {}
            return count

    def credential(self, target: Target, **options) -> Credential:
        """
        Get the credential for a target.

        Cached credentials are only returned when both user and password
        are populated; otherwise the stores are consulted again.

        Args:
            target: Connection-like object with a host attribute.
            options: Passed through to each store.

        Returns:
            Resolved Credential.

        Raises:
            MissingCredential: No store produced a credential.
        """
        host = target.host
        cached = self._cache.get(host)
        if cached is not None and cached.user and cached.password:
            return cached

        found = self._credential_from_stores(target, **options)
        if found is not None:
            return found

        stores = ", ".join(str(s) for s in self._stores)
        raise MissingCredential(
            f"Could not find credential for {host} in any credential store ({stores})."
        )

    def _credential_from_stores(self, target: Target, **options) -> Optional[Credential]:
        host = target.host
        for store in self.stores:
            logger.debug(f"Gathering {host} credentials from {store} credential store")
            cred = store.credential(target, **options)
            if cred is None:
                continue

            logger.debug(f"{host} credentials found in {store} credential store")
            self.set_credential(host, cred)
            return cred
        return None


# Process-wide resolver, created on first use
_auth: Optional[Auth] = None
_auth_lock = threading.Lock()


def get_auth() -> Auth:
    """Get the process-wide Auth resolver."""
    global _auth

    if _auth is None:
        with _auth_lock:
            if _auth is None:
                _auth = Auth()

    return _auth
