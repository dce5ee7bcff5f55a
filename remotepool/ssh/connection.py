"""
SSH connection - command execution and file transfer over paramiko.

Path: remotepool/ssh/connection.py

An SSHConnection owns one lazily-established paramiko session to a host.
Before every operation it checks whether that session is still usable
(open, same host, same credential, healthy gateway) and rebuilds it if not.
Commands and transfers run inside the shared retry wrapper so that
authentication failures re-resolve credentials and closed streams rebuild
the session.

Gateway (jump host) support is driven by the owning host pool's metadata:
    gateway_host, gateway_port, gateway_metadata
"""

import logging
import re
import threading
from io import BytesIO
from typing import Any, Dict, Optional

import paramiko

from remotepool.core.config import get_config
from remotepool.core.errors import AuthenticationError, MissingSudoPassword, PtyError
from remotepool.core.execution import (
    OutputCollector,
    build_command,
    permission_cmds,
    single_quote,
    sudo_remote_file_path,
    with_retries,
)
from remotepool.core.probe import port_open
from remotepool.core.result import Result
from remotepool.ssh import session as ssh_session
from remotepool.ssh.session import SessionIdentity
from remotepool.vault.auth import Auth, get_auth
from remotepool.vault.models import Credential


logger = logging.getLogger(__name__)

SUDO_AUTH_FAILURE = re.compile(r"^sudo: \d+ incorrect password attempts?$", re.MULTILINE)

RECV_SIZE = 65536


class GatewayConnection:
    """
    Intermediate SSH host used to reach a target.

    Exposes host/port/metadata so credential stores can resolve the
    gateway's own credential exactly as they would for any other target.
    """

    def __init__(self, host: str, port: Optional[int] = None, metadata: Optional[Dict[str, Any]] = None):
        self.host = host
        self.port = port or SSHConnection.REMOTE_PORT
        self.metadata = dict(metadata or {})
        self.client: Optional[paramiko.SSHClient] = None
        self.identity: Optional[SessionIdentity] = None

    def get(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.metadata.get(key)

    def __setitem__(self, key: str, value: Any):
        self.metadata[key] = value

    def open(self, credential: Credential) -> paramiko.SSHClient:
        logger.debug(f"Initializing SSH gateway connection to {credential.user}@{self.host}:{self.port}")
        self.client = ssh_session.open_session(self.host, self.port, credential)
        self.identity = SessionIdentity.build(self.host, self.port, credential)
        return self.client

    def tunnel(self, host: str, port: int) -> paramiko.Channel:
        """Open a channel through the gateway to host:port."""
        logger.debug(f"Opening tunnel through {self.host}:{self.port} to {host}:{port}")
        return ssh_session.open_tunnel(self.client, host, port)

    def is_active(self) -> bool:
        return ssh_session.is_active(self.client)

    def close(self):
        """Shut down the gateway session. Failures are logged, not raised."""
        client, self.client = self.client, None
        if client is None:
            return
        try:
            client.close()
        except Exception as e:
            logger.warning(f"Error closing SSH gateway {self.host}:{self.port} (non-fatal): {e}")


class SSHConnection:
    """
    SSH connection to a single host.

    Usage:
        conn = SSHConnection("web01", host_pool=pool)
        result = conn.run("uname", "-a")
        conn.upload("app.conf", "/etc/app.conf", sudo=True, owner="root", mode="0644")
    """

    REMOTE_PORT = 22

    def __init__(self, host: str, port: Optional[int] = None, host_pool=None, auth: Optional[Auth] = None):
        logger.debug(f"Creating SSHConnection {id(self)} for {host}")
        self.host = host
        self.port = port or self.REMOTE_PORT
        self.host_pool = host_pool
        self._auth = auth
        self._client: Optional[paramiko.SSHClient] = None
        self._identity: Optional[SessionIdentity] = None
        self._gateway: Optional[GatewayConnection] = None
        self._lock = threading.RLock()

    @property
    def type(self) -> str:
        return "ssh"

    @property
    def auth(self) -> Auth:
        return self._auth or get_auth()

    def get(self, key: str, default: Any = None) -> Any:
        """Metadata lookup, delegated to the owning host pool."""
        if self.host_pool is None:
            return default
        return self.host_pool.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.get(key)

    def credential(self, **options) -> Credential:
        """Resolve the credential for this connection."""
        return self.auth.credential(self, **options)

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def connection(self) -> paramiko.SSHClient:
        """
        Get the SSH session, (re)building it when the current one is stale.

        Returns:
            Connected paramiko.SSHClient.
        """
        with self._lock:
            if not self._restart_connection():
                return self._client

            # Close any active connections
            self.close()

            target_cred = self.credential()
            logger.debug(f"Initializing SSH connection to {target_cred.user}@{self.host}:{self.port}")

            if self._via_gateway():
                gateway = GatewayConnection(
                    self.get("gateway_host"),
                    self.get("gateway_port"),
                    self.get("gateway_metadata"),
                )
                gateway.open(self.auth.credential(gateway))
                try:
                    channel = gateway.tunnel(self.host, self.port)
                    client = ssh_session.open_session(self.host, self.port, target_cred, sock=channel)
                except Exception:
                    gateway.close()
                    raise
                self._gateway = gateway
            else:
                client = ssh_session.open_session(self.host, self.port, target_cred)

            self._client = client
            self._identity = SessionIdentity.build(self.host, self.port, target_cred)
            return client

    def close(self):
        """Close the target session, then the gateway session, if open."""
        with self._lock:
            client, gateway = self._client, self._gateway
            self._client = None
            self._gateway = None
            self._identity = None

        if client is not None:
            try:
                client.close()
            except Exception as e:
                logger.warning(f"Error closing SSH connection to {self.host} (non-fatal): {e}")

        if gateway is not None:
            gateway.close()

    def port_open(self) -> bool:
        """Whether the remote host's SSH port is available."""
        return port_open(self.host, self.port)

    def _via_gateway(self) -> bool:
        return bool(self.get("gateway_host"))

    def _restart_connection(self) -> bool:
        """Whether the current session must be torn down and rebuilt."""
        if self._client is None or self._identity is None:
            return True
        if not ssh_session.is_active(self._client):
            return True
        if self._identity.host != self.host or self._identity.port != self.port:
            return True
        if not self._identity.same_credential(self.credential()):
            return True

        if not self._via_gateway():
            # Gateway removed from metadata since the session was built
            return self._gateway is not None

        gateway = self._gateway
        if gateway is None or not gateway.is_active():
            return True
        if gateway.host != self.get("gateway_host"):
            return True
        if gateway.port != (self.get("gateway_port") or self.REMOTE_PORT):
            return True
        if not gateway.identity.same_credential(self.auth.credential(gateway)):
            return True

        return False

    def _with_retries(self, description: str, retries: Optional[int], operation):
        if retries is None:
            retries = get_config().connection.retries
        return with_retries(
            operation,
            description,
            retries,
            host=self.host,
            auth=self.auth,
            close=self.close,
            auth_errors=(paramiko.AuthenticationException,),
            transport_errors=(OSError, EOFError, paramiko.SSHException),
        )

    # =========================================================================
    # Commands
    # =========================================================================

    def run(self, command: str, *args, **options) -> Result:
        """
        Run a command on the host.

        Args:
            command: Command to run.
            args: Command arguments, joined with spaces.
            options:
                sudo: Run with sudo (default False).
                pty: Allocate a pseudo-terminal (default False).
                retries: Retries for auth/closed-stream failures.
                input: Text written to the command's stdin.
                accepted_exit_codes: Exit codes treated as success (default [0]).
                on_stdout/on_stderr/on_output: Called with each output chunk.
                on_success/on_error/on_complete: Called with the Result.

        Returns:
            Result with stdout, stderr, combined output and exit code.

        Raises:
            MissingSudoPassword: sudo requested without a password.
            PtyError: pty requested and refused.
            AuthenticationError: Authentication retries exhausted.
        """
        command = build_command(command, args)
        sudo = bool(options.get("sudo"))
        pty = bool(options.get("pty"))

        # Refer to the command by id throughout the log to avoid logging sensitive data
        command_id = id(command)
        logger.debug(f"Preparing to run command {command_id} on {self.host}")

        def attempt() -> Result:
            ssh_command = command
            stdin = options.get("input") or ""

            if sudo:
                logger.debug(f"Sudo is enabled for command {command_id}")
                password = self.credential().password
                if not password:
                    raise MissingSudoPassword(f"{self.host} credential does not have a password specified")
                ssh_command = f"sudo -p '' -S sh -c {single_quote(command)}"
                stdin = f"{password}\n{stdin}"

            collector = OutputCollector(command, options, skip_first_stdout=pty and sudo)
            exit_code = self._exec(ssh_command, stdin, pty, collector, command_id)

            logger.debug(f"Generating result for command {command_id}")
            result = collector.result(exit_code)

            if sudo and result.is_error() and SUDO_AUTH_FAILURE.search(result.stderr):
                raise AuthenticationError(f"Could not authenticate to sudo as {self.credential().user}")

            return collector.complete(result)

        return self._with_retries(f"command {command_id}", options.get("retries"), attempt)

    def _exec(self, ssh_command: str, stdin: str, pty: bool, collector: OutputCollector, command_id: int) -> Optional[int]:
        transport = self.connection().get_transport()
        if transport is None:
            raise paramiko.SSHException("SSH session not active")

        channel = transport.open_session()
        try:
            if pty:
                logger.debug(f"Requesting pty for command {command_id}")
                try:
                    channel.get_pty()
                except paramiko.SSHException as e:
                    raise PtyError("could not obtain pty") from e

            logger.debug(f"Executing command {command_id}")
            channel.exec_command(ssh_command)

            if stdin:
                logger.debug(f"Sending input for command {command_id}")
                channel.sendall(stdin.encode())
            channel.shutdown_write()

            while True:
                received = False
                if channel.recv_ready():
                    collector.stdout(channel.recv(RECV_SIZE))
                    received = True
                if channel.recv_stderr_ready():
                    collector.stderr(channel.recv_stderr(RECV_SIZE))
                    received = True
                if channel.exit_status_ready() and not channel.recv_ready() and not channel.recv_stderr_ready():
                    break
                if not received:
                    channel.status_event.wait(0.1)

            return channel.recv_exit_status()
        finally:
            channel.close()

    def run_script(self, local_path: str, remote_path: str, *args, **options) -> Result:
        """
        Upload a script, make it executable and run it.

        Options are forwarded to upload() and run().
        """
        self.upload(local_path, remote_path, **options)
        logger.debug(f"Running script {remote_path} on {self.host}")
        self.run(f"chmod +x {single_quote(remote_path)}", **options)
        return self.run(remote_path, *args, **options)

    def file_exist(self, remote_path: str, **options) -> bool:
        """Whether a remote file or directory exists."""
        logger.debug(f"Checking if file {remote_path} exists on {self.host}")
        quoted = single_quote(remote_path)
        return self.run(f"test -f {quoted} || test -d {quoted}", **options).is_success()

    # =========================================================================
    # File transfer
    # =========================================================================

    def upload(self, local_path: str, remote_path: str, **options) -> str:
        """
        Upload a file from the local host to the remote host.

        Args:
            local_path: Local source path.
            remote_path: Remote destination path.
            options:
                sudo: Upload as the login user, then move into place with sudo.
                owner / group / mode: Permissions applied to the remote file.
                retries: Retries for auth/closed-stream failures.

        Returns:
            Remote path.
        """
        logger.debug(f"Uploading file {local_path} to {self.host}:{remote_path}")
        retries = options.get("retries")

        if options.get("sudo"):
            self._sudo_upload(local_path, remote_path, options)
            return remote_path

        permission_cmd = permission_cmds(remote_path, options.get("owner"), options.get("group"), options.get("mode"))

        self._with_retries(
            f"upload {local_path} to {remote_path}",
            retries,
            lambda: self._put(local_path, remote_path),
        )

        if permission_cmd:
            self.run(permission_cmd, retries=retries).raise_for_error()

        return remote_path

    def download(self, remote_path: str, local_path: Optional[str] = None, **options) -> str:
        """
        Download a file from the remote host.

        Args:
            remote_path: Remote source path.
            local_path: Local destination. If None, the file content is returned.
            options:
                sudo: Copy the file to a readable temporary path with sudo first.
                retries: Retries for auth/closed-stream failures.

        Returns:
            Local path, or the file content when local_path is None.
        """
        retries = options.get("retries")
        user_remote_path = None

        try:
            source = remote_path
            if options.get("sudo"):
                # Copy to a path the login user can read before downloading
                user_remote_path = sudo_remote_file_path(remote_path, id(self))
                logger.debug(f"Sudo enabled, copying file from {self.host}:{remote_path} to {self.host}:{user_remote_path}")
                user = self.credential().user
                self.run(
                    f"/bin/cp -f {single_quote(remote_path)} {single_quote(user_remote_path)} "
                    f"&& /bin/chown {user} {single_quote(user_remote_path)}",
                    sudo=True,
                    retries=retries,
                ).raise_for_error()
                source = user_remote_path

            logger.debug(f"Downloading file from {self.host}:{source}")
            return self._with_retries(
                f"download {source} to {local_path}",
                retries,
                lambda: self._get(source, local_path),
            )
        finally:
            if user_remote_path is not None:
                logger.debug(f"Sudo enabled, removing temporary file from {self.host}:{user_remote_path}")
                self._remove_quietly(user_remote_path)

    def _sudo_upload(self, local_path: str, remote_path: str, options: dict):
        # Upload to a path the login user can write, then move it into place
        user_remote_path = sudo_remote_file_path(remote_path, id(self))
        retries = options.get("retries")
        logger.debug(f"Sudo enabled, uploading file to {user_remote_path}")

        permission_cmd = permission_cmds(
            user_remote_path, options.get("owner"), options.get("group"), options.get("mode")
        )

        self._with_retries(
            f"upload {local_path} to {user_remote_path}",
            retries,
            lambda: self._put(local_path, user_remote_path),
        )

        move_cmd = f"/bin/mv -f {single_quote(user_remote_path)} {single_quote(remote_path)}"
        if permission_cmd:
            move_cmd = f"{permission_cmd} && {move_cmd}"

        try:
            logger.debug(f"Sudo enabled, moving file from {user_remote_path} to {remote_path}")
            self.run(move_cmd, sudo=True, retries=retries).raise_for_error()
        except Exception:
            logger.debug(f"Sudo enabled, cleaning up {user_remote_path}")
            self._remove_quietly(user_remote_path)
            raise

    def _remove_quietly(self, path: str):
        """Best-effort privileged removal of a temporary file."""
        try:
            result = self.run(f"/bin/rm -f {single_quote(path)}", sudo=True)
        except Exception as e:
            logger.warning(f"Failed to remove temporary file {self.host}:{path} (non-fatal): {e}")
            return
        if result.is_error():
            logger.warning(f"Failed to remove temporary file {self.host}:{path} (exit code {result.exit_code})")

    def _put(self, local_path: str, remote_path: str):
        with self.connection().open_sftp() as sftp:
            sftp.put(local_path, remote_path)

    def _get(self, remote_path: str, local_path: Optional[str]) -> str:
        with self.connection().open_sftp() as sftp:
            if local_path is None:
                buffer = BytesIO()
                sftp.getfo(remote_path, buffer)
                return buffer.getvalue().decode("utf-8", errors="replace")
            sftp.get(remote_path, local_path)
            return local_path

    def __repr__(self) -> str:
        return f"SSHConnection(host={self.host}, port={self.port})"
