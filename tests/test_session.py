"""Tests for remotepool.ssh.session."""

from unittest.mock import MagicMock, patch

import paramiko
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from remotepool.ssh import session
from remotepool.ssh.session import SessionIdentity, connect_params, load_private_key
from remotepool.vault import Credential


def ed25519_pem(password=None):
    encryption = (
        serialization.BestAvailableEncryption(password)
        if password else serialization.NoEncryption()
    )
    return ed25519.Ed25519PrivateKey.generate().private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.OpenSSH,
        encryption,
    ).decode()


def rsa_pem():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048).private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    ).decode()


class TestLoadPrivateKey:
    def test_ed25519(self):
        assert isinstance(load_private_key(ed25519_pem()), paramiko.Ed25519Key)

    def test_rsa(self):
        assert isinstance(load_private_key(rsa_pem()), paramiko.RSAKey)

    def test_garbage(self):
        with pytest.raises(ValueError, match="Could not load private key"):
            load_private_key("not a key")

    def test_passphrase_protected(self):
        with pytest.raises(ValueError, match="passphrase"):
            load_private_key(ed25519_pem(b"pw"))


class TestConnectParams:
    def test_password_credential(self):
        params = connect_params("web01", 22, Credential("deploy", "secret"))
        assert params["hostname"] == "web01"
        assert params["username"] == "deploy"
        assert params["password"] == "secret"
        assert params["timeout"] == 30
        assert params["allow_agent"] is False
        assert params["look_for_keys"] is False
        assert "pkey" not in params
        assert "sock" not in params

    def test_key_credential_and_sock(self):
        sock = object()
        cred = Credential("deploy", private_key="/keys/id", private_key_data=ed25519_pem())
        params = connect_params("web01", 2222, cred, sock=sock)
        assert "password" not in params
        assert params["key_filename"] == "/keys/id"
        assert isinstance(params["pkey"], paramiko.Ed25519Key)
        assert params["sock"] is sock
        assert params["port"] == 2222


class TestSessionIdentity:
    def test_secrets_are_digested(self):
        identity = SessionIdentity.build("web01", 22, Credential("deploy", "secret", private_key_data="KEY"))
        assert "secret" not in repr(identity)
        assert "KEY" not in "".join(identity.keys)

    def test_same_credential(self):
        identity = SessionIdentity.build("web01", 22, Credential("deploy", "secret"))
        assert identity.same_credential(Credential("deploy", "secret"))
        assert not identity.same_credential(Credential("deploy", "rotated"))
        assert not identity.same_credential(Credential("admin", "secret"))
        assert not identity.same_credential(Credential("deploy", "secret", private_key="/k"))

    def test_key_material_is_unordered(self):
        cred = Credential("deploy", private_key="/k", private_key_data="DATA")
        identity = SessionIdentity.build("web01", 22, cred)
        assert identity.same_credential(Credential("deploy", private_key_data="DATA", private_key="/k"))


class TestOpenSession:
    @patch("remotepool.ssh.session.paramiko.SSHClient")
    def test_keepalive_is_set(self, mock_client_class):
        client = mock_client_class.return_value
        assert session.open_session("web01", 22, Credential("deploy", "secret")) is client
        client.connect.assert_called_once()
        client.get_transport.return_value.set_keepalive.assert_called_once_with(300)

    @patch("remotepool.ssh.session.paramiko.SSHClient")
    def test_client_closed_on_failure(self, mock_client_class):
        client = mock_client_class.return_value
        client.connect.side_effect = paramiko.AuthenticationException("Authentication failed.")
        with pytest.raises(paramiko.AuthenticationException):
            session.open_session("web01", 22, Credential("deploy", "wrong"))
        client.close.assert_called_once_with()


class TestOpenTunnel:
    def test_direct_tcpip_channel(self):
        gateway = MagicMock()
        transport = gateway.get_transport.return_value
        transport.is_active.return_value = True

        session.open_tunnel(gateway, "web01", 22)

        transport.open_channel.assert_called_once_with("direct-tcpip", ("web01", 22), ("127.0.0.1", 0))

    def test_inactive_gateway(self):
        gateway = MagicMock()
        gateway.get_transport.return_value.is_active.return_value = False
        with pytest.raises(paramiko.SSHException, match="not active"):
            session.open_tunnel(gateway, "web01", 22)

    def test_is_active(self):
        assert session.is_active(None) is False
        client = MagicMock()
        client.get_transport.return_value = None
        assert session.is_active(client) is False
