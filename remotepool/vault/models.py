"""
Credential data model.

Secrets are held encrypted in memory with a per-secret Fernet key generated
when the secret is set. This keeps plaintext out of accidental logging,
repr() output and serialization; it is not a defence against anyone able to
read process memory.
"""

from typing import Any, Mapping, Optional, Tuple

from cryptography.fernet import Fernet


# (key, token) pair for a single encrypted secret
_Sealed = Tuple[bytes, bytes]


def _seal(plaintext: str) -> _Sealed:
    key = Fernet.generate_key()
    return key, Fernet(key).encrypt(plaintext.encode())


def _unseal(sealed: _Sealed) -> str:
    key, token = sealed
    return Fernet(key).decrypt(token).decode()


class Credential:
    """
    Authentication credential for a remote host.

    Usage:
        cred = Credential("admin", "secret", private_key="~/.ssh/id_ed25519")
        cred.password          # "secret"
        str(cred)              # "user: admin"
    """

    def __init__(
        self,
        user: str,
        password: Optional[str] = None,
        private_key: Optional[str] = None,
        private_key_data: Optional[str] = None,
    ):
        self.user = user
        self.private_key = private_key  # path on the local machine
        self._password: Optional[_Sealed] = None
        self._private_key_data: Optional[_Sealed] = None
        self.password = password
        self.private_key_data = private_key_data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Credential":
        """
        Build a credential from a mapping.

        Args:
            data: Mapping with user, password, private_key and
                  private_key_data keys (all but user optional).
        """
        return cls(
            data.get("user"),
            data.get("password"),
            private_key=data.get("private_key"),
            private_key_data=data.get("private_key_data"),
        )

    # The sealed pair is built completely before the single attribute
    # assignment, so readers see either the old secret or the new one.

    @property
    def password(self) -> Optional[str]:
        """Decrypted password or None if unset."""
        sealed = self._password
        return _unseal(sealed) if sealed else None

    @password.setter
    def password(self, value: Optional[str]):
        self._password = _seal(str(value)) if value is not None else None

    @property
    def private_key_data(self) -> Optional[str]:
        """Decrypted private key data or None if unset."""
        sealed = self._private_key_data
        return _unseal(sealed) if sealed else None

    @private_key_data.setter
    def private_key_data(self, value: Optional[str]):
        self._private_key_data = _seal(str(value)) if value is not None else None

    @property
    def has_password(self) -> bool:
        return self._password is not None

    @property
    def has_key(self) -> bool:
        return bool(self.private_key) or self._private_key_data is not None

    def __str__(self) -> str:
        return f"user: {self.user}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}: ({self})"
