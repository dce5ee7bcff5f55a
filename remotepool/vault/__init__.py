"""Credentials - encrypted credential model, stores and resolver."""

from remotepool.vault.models import Credential
from remotepool.vault.stores import CredentialStore, MemoryStore, EnvironmentStore, CallbackStore
from remotepool.vault.auth import Auth, get_auth

__all__ = [
    "Credential",
    "CredentialStore",
    "MemoryStore",
    "EnvironmentStore",
    "CallbackStore",
    "Auth",
    "get_auth",
]
