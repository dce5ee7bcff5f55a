"""SSH transport - paramiko-backed connection with gateway support."""

from remotepool.ssh.connection import SSHConnection, GatewayConnection

__all__ = ["SSHConnection", "GatewayConnection"]
