"""
Exception hierarchy for remotepool.

Path: remotepool/core/errors.py

Everything raised deliberately by the library derives from RemotePoolError so
callers can catch the whole family in one place. Third-party protocol errors
(paramiko, pypsrp) are translated at the retry boundary where it matters.
"""


class RemotePoolError(Exception):
    """Base class for remotepool errors."""


class PtyError(RemotePoolError):
    """Remote host refused to allocate a pseudo-terminal."""


class HostTypeDeterminationError(RemotePoolError):
    """Neither the SSH nor the WinRM port answered for a host."""


class AuthenticationError(RemotePoolError):
    """Credential rejected by the remote host or by sudo."""


class ResultError(RemotePoolError):
    """A command exit code fell outside the accepted set."""


class MissingOverride(RemotePoolError):
    """A credential store subclass did not implement credential()."""


class MissingCredential(RemotePoolError):
    """No credential store produced a credential for the host."""


class MissingSudoPassword(RemotePoolError):
    """Elevation was requested but the credential has no password."""


class InvalidMetadataKey(RemotePoolError):
    """Host pool metadata key collides with a reserved attribute name."""


class PoolTimeout(RemotePoolError, TimeoutError):
    """No pooled connection became available in time."""
