"""
WinRM connection - PowerShell execution and file transfer over pypsrp.

Path: remotepool/winrm/connection.py

Commands run through pypsrp's Client.execute_ps(). The exit code is carried
back on a sentinel line appended to the pipeline output, since a PowerShell
pipeline has no process exit status of its own.

Elevated (sudo) commands run as a one-shot scheduled task registered with
the connection's own credential at the highest run level. The task writes
stdout, stderr and the exit code to a private directory under
C:\\Windows\\Temp which the outer script reads back and removes.
"""

import base64
import hashlib
import logging
import os
import tempfile
import threading
import uuid
from typing import Any, Optional, Tuple

from pypsrp.client import Client
from pypsrp.exceptions import AuthenticationError as PSRPAuthenticationError

from remotepool.core.config import get_config
from remotepool.core.errors import MissingSudoPassword
from remotepool.core.execution import OutputCollector, build_command, with_retries
from remotepool.core.probe import port_open
from remotepool.core.result import Result
from remotepool.vault.auth import Auth, get_auth
from remotepool.vault.models import Credential


logger = logging.getLogger(__name__)

EXIT_SENTINEL = "__REMOTEPOOL_EXIT__:"

ELEVATED_TEMP_ROOT = "C:\\Windows\\Temp"


def ps_quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string."""
    return "'" + str(value).replace("'", "''") + "'"


def encode_command(script: str) -> str:
    """Encode a script for powershell.exe -EncodedCommand (base64 UTF-16LE)."""
    return base64.b64encode(script.encode("utf-16-le")).decode("ascii")


def with_exit_code(script: str) -> str:
    """
    Append the statements that report the script's exit code on a sentinel line.

    $? is read first: every later statement overwrites it.
    """
    return (
        f"{script}\n"
        "$__ok = $?\n"
        "if ($LASTEXITCODE -ne $null) { $__rc = $LASTEXITCODE } elseif ($__ok) { $__rc = 0 } else { $__rc = 1 }\n"
        f"\"{EXIT_SENTINEL}$__rc\""
    )


def split_exit_code(output: str) -> Tuple[str, Optional[int]]:
    """Remove the exit code sentinel line from pipeline output."""
    exit_code = None
    lines = []
    for line in (output or "").splitlines():
        if line.startswith(EXIT_SENTINEL):
            try:
                exit_code = int(line[len(EXIT_SENTINEL):].strip())
            except ValueError:
                logger.warning(f"Received malformed exit code sentinel '{line}'")
            continue
        lines.append(line)

    stdout = "\n".join(lines)
    if lines:
        stdout += "\n"
    return stdout, exit_code


def elevated_script(command: str, user: str, password: str, timeout: int) -> str:
    """
    Build a script that runs a command as a scheduled task at the highest run level.

    The task's stdout and stderr are replayed on the calling pipeline's
    output and error streams and its exit code becomes $LASTEXITCODE.
    """
    task_id = f"remotepool-{uuid.uuid4().hex}"
    work_dir = f"{ELEVATED_TEMP_ROOT}\\{task_id}"
    out_file = f"{work_dir}\\stdout.txt"
    err_file = f"{work_dir}\\stderr.txt"
    rc_file = f"{work_dir}\\rc.txt"

    inner = (
        "$ErrorActionPreference = 'Continue'\n"
        "try {\n"
        f"  & {{ {command} }} 1> {ps_quote(out_file)} 2> {ps_quote(err_file)}\n"
        "  $ok = $?\n"
        "  if ($LASTEXITCODE -ne $null) { $rc = $LASTEXITCODE } elseif ($ok) { $rc = 0 } else { $rc = 1 }\n"
        "} catch {\n"
        f"  $_ | Out-File -FilePath {ps_quote(err_file)} -Append\n"
        "  $rc = 1\n"
        "}\n"
        f"Set-Content -LiteralPath {ps_quote(rc_file)} -Value $rc\n"
    )
    arguments = f"-NoProfile -NonInteractive -ExecutionPolicy Bypass -EncodedCommand {encode_command(inner)}"

    return (
        f"$dir = {ps_quote(work_dir)}\n"
        "New-Item -ItemType Directory -Path $dir -Force | Out-Null\n"
        f"$action = New-ScheduledTaskAction -Execute 'powershell.exe' -Argument {ps_quote(arguments)}\n"
        f"Register-ScheduledTask -TaskName {ps_quote(task_id)} -Action $action "
        f"-User {ps_quote(user)} -Password {ps_quote(password)} -RunLevel Highest -Force | Out-Null\n"
        "try {\n"
        f"  Start-ScheduledTask -TaskName {ps_quote(task_id)}\n"
        f"  $deadline = (Get-Date).AddSeconds({int(timeout)})\n"
        f"  while (-not (Test-Path -LiteralPath {ps_quote(rc_file)})) {{\n"
        "    if ((Get-Date) -gt $deadline) { throw 'Timed out waiting for elevated command' }\n"
        "    Start-Sleep -Milliseconds 250\n"
        "  }\n"
        f"  $stdout = Get-Content -Raw -LiteralPath {ps_quote(out_file)} -ErrorAction SilentlyContinue\n"
        f"  $stderr = Get-Content -Raw -LiteralPath {ps_quote(err_file)} -ErrorAction SilentlyContinue\n"
        "  if ($stdout) { Write-Output $stdout.TrimEnd() }\n"
        "  if ($stderr) { Write-Error $stderr.TrimEnd() -ErrorAction Continue }\n"
        f"  $global:LASTEXITCODE = [int](Get-Content -LiteralPath {ps_quote(rc_file)})\n"
        "} finally {\n"
        f"  Unregister-ScheduledTask -TaskName {ps_quote(task_id)} -Confirm:$false -ErrorAction SilentlyContinue\n"
        "  Remove-Item -LiteralPath $dir -Recurse -Force -ErrorAction SilentlyContinue\n"
        "}"
    )


def _digest(secret: Optional[str]) -> Optional[str]:
    if secret is None:
        return None
    return hashlib.sha256(secret.encode()).hexdigest()


class WinRMConnection:
    """
    WinRM connection to a single Windows host.

    Usage:
        conn = WinRMConnection("win01", host_pool=pool)
        result = conn.run("Get-Service", "WinRM")
    """

    REMOTE_PORT = 5985

    def __init__(self, host: str, port: Optional[int] = None, host_pool=None, auth: Optional[Auth] = None):
        logger.debug(f"Creating WinRMConnection {id(self)} for {host}")
        self.host = host
        self.port = port or self.REMOTE_PORT
        self.host_pool = host_pool
        self._auth = auth
        self._client: Optional[Client] = None
        # (host, port, user, password digest) the client was built with
        self._identity: Optional[Tuple[str, int, str, Optional[str]]] = None
        self._lock = threading.RLock()

    @property
    def type(self) -> str:
        return "winrm"

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
        return self.auth.credential(self, **options)

    def port_open(self) -> bool:
        """Whether the remote host's WinRM port is available."""
        return port_open(self.host, self.port)

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def _current_identity(self, credential: Credential) -> Tuple[str, int, str, Optional[str]]:
        return self.host, self.port, credential.user, _digest(credential.password)

    def connection(self) -> Client:
        """Get the pypsrp client, rebuilding it when host or credential changed."""
        with self._lock:
            cred = self.credential()
            identity = self._current_identity(cred)
            if self._client is not None and self._identity == identity:
                return self._client

            self.close()

            config = get_config().winrm
            logger.debug(f"Initializing WinRM connection to {cred.user}@{self.host}:{self.port}")
            self._client = Client(
                self.host,
                port=self.port,
                username=cred.user,
                password=cred.password,
                ssl=config.ssl,
                auth=config.auth,
                cert_validation=config.cert_validation,
            )
            self._identity = identity
            return self._client

    def close(self):
        """Close the WinRM session, if open."""
        with self._lock:
            client = self._client
            self._client = None
            self._identity = None

        if client is None:
            return
        try:
            client.close()
        except Exception as e:
            logger.warning(f"Error closing WinRM connection to {self.host} (non-fatal): {e}")

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
            auth_errors=(PSRPAuthenticationError,),
        )

    # =========================================================================
    # Commands
    # =========================================================================

    def run(self, command: str, *args, **options) -> Result:
        """
        Run a PowerShell command on the host.

        Accepts the same options as SSHConnection.run(). pty is ignored.
        Output callbacks fire once per stream after the command completes.

        Raises:
            MissingSudoPassword: sudo requested without a password.
            AuthenticationError: Authentication retries exhausted.
        """
        command = build_command(command, args)
        command_id = id(command)
        logger.debug(f"Preparing to run command {command_id} on {self.host}")

        def attempt() -> Result:
            script = command
            if options.get("sudo"):
                logger.debug(f"Sudo is enabled for command {command_id}")
                cred = self.credential()
                if not cred.password:
                    raise MissingSudoPassword(f"{self.host} credential does not have a password specified")
                script = elevated_script(command, cred.user, cred.password, get_config().winrm.elevated_timeout)

            if options.get("input"):
                script = f"{ps_quote(options['input'])} | & {{ {script} }}"

            logger.debug(f"Executing command {command_id}")
            output, streams, had_errors = self.connection().execute_ps(with_exit_code(script))

            stdout, exit_code = split_exit_code(output)
            if exit_code is None:
                # Terminating error before the sentinel was written
                exit_code = 1 if had_errors else 0

            collector = OutputCollector(command, options)
            collector.stdout(stdout)
            collector.stderr("".join(f"{error}\n" for error in streams.error))

            logger.debug(f"Generating result for command {command_id}")
            return collector.complete(collector.result(exit_code))

        return self._with_retries(f"command {command_id}", options.get("retries"), attempt)

    def run_script(self, local_path: str, remote_path: str, *args, **options) -> Result:
        """Upload a script and run it. No executable bit is needed on Windows."""
        self.upload(local_path, remote_path, **options)
        logger.debug(f"Running script {remote_path} on {self.host}")
        return self.run(f"& {ps_quote(remote_path)}", *args, **options)

    def file_exist(self, remote_path: str, **options) -> bool:
        """Whether a remote file or directory exists."""
        logger.debug(f"Checking if file {remote_path} exists on {self.host}")

        def attempt() -> bool:
            output, _, _ = self.connection().execute_ps(f"Test-Path -LiteralPath {ps_quote(remote_path)}")
            return output.strip().lower() == "true"

        return self._with_retries(f"exists {remote_path}", options.get("retries"), attempt)

    # =========================================================================
    # File transfer
    # =========================================================================

    def upload(self, local_path: str, remote_path: str, **options) -> str:
        """
        Upload a file to the host.

        sudo, owner, group and mode are not applied over WinRM.

        Returns:
            Remote path.
        """
        logger.debug(f"Uploading file {local_path} to {self.host}:{remote_path}")
        self._with_retries(
            f"upload {local_path} to {remote_path}",
            options.get("retries"),
            lambda: self.connection().copy(local_path, remote_path),
        )
        return remote_path

    def download(self, remote_path: str, local_path: Optional[str] = None, **options) -> str:
        """
        Download a file from the host.

        Returns:
            Local path, or the file content when local_path is None.
        """
        logger.debug(f"Downloading file {remote_path} from {self.host} to {local_path}")
        retries = options.get("retries")

        if local_path is not None:
            self._with_retries(
                f"download {remote_path} to {local_path}",
                retries,
                lambda: self.connection().fetch(remote_path, local_path),
            )
            return local_path

        fd, temp_path = tempfile.mkstemp(prefix="remotepool-")
        os.close(fd)
        try:
            self._with_retries(
                f"download {remote_path}",
                retries,
                lambda: self.connection().fetch(remote_path, temp_path),
            )
            with open(temp_path, encoding="utf-8", errors="replace") as f:
                return f.read()
        finally:
            os.remove(temp_path)

    def __repr__(self) -> str:
        return f"WinRMConnection(host={self.host}, port={self.port})"
