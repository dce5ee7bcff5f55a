"""
Shared fixtures: isolated config/singletons and an in-memory fake SSH network.

The fake network stands in for paramiko. A FakeRemote holds a tiny
filesystem and interprets the handful of shell commands remotepool issues
(test, mv, cp, rm, chown, chmod, sudo wrappers, ...).
"""

import shlex
import threading
from typing import Dict, List, Optional, Tuple

import paramiko
import pytest

from remotepool.core import config as config_module
from remotepool.core import execution
from remotepool.pool import registry
from remotepool.ssh import session as ssh_session
from remotepool.vault import auth as auth_module
from remotepool.vault import Auth, Credential, MemoryStore


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point config at a missing file and reset process-wide singletons."""
    monkeypatch.setenv("REMOTEPOOL_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setattr(config_module, "_config", None)
    monkeypatch.setattr(auth_module, "_auth", None)
    monkeypatch.setattr(registry, "_pool", None)


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Record retry backoff sleeps instead of sleeping."""
    calls = []
    monkeypatch.setattr(execution.time, "sleep", calls.append)
    return calls


# =============================================================================
# Fake remote host
# =============================================================================


class FakeRemote:
    """In-memory host: files, ownership, modes and a tiny shell."""

    def __init__(self, hostname: str = "fakehost", user: str = "deploy", password: str = "secret"):
        self.hostname = hostname
        self.user = user
        self.password = password
        self.sudo_password = password
        self.files: Dict[str, bytes] = {}
        self.dirs = {"/", "/etc", "/tmp"}
        self.owners: Dict[str, str] = {}
        self.modes: Dict[str, str] = {}
        self.commands: List[str] = []
        self.refuse_pty = False
        self.fail_puts = 0
        self.fail_runs = 0
        self.fail_commands = set()

    # -- shell -----------------------------------------------------------------

    def execute(self, command: str, stdin: str = "", pty: bool = False) -> Tuple[str, str, int]:
        self.commands.append(command)

        if self.fail_runs > 0:
            self.fail_runs -= 1
            raise EOFError()

        tokens = shlex.split(command)
        if tokens[:5] == ["sudo", "-p", "", "-S", "sh"] and tokens[5] == "-c":
            password, _, rest = stdin.partition("\n")
            if password != self.sudo_password:
                return "", "sudo: 1 incorrect password attempt\n", 1
            echo = f"{password}\r\n" if pty else ""
            stdout, stderr, code = self._evaluate(shlex.split(tokens[6]), rest, privileged=True)
            return echo + stdout, stderr, code

        return self._evaluate(tokens, stdin, privileged=False)

    def _evaluate(self, tokens: List[str], stdin: str, privileged: bool) -> Tuple[str, str, int]:
        # Split into simple commands joined by && / ||
        commands = [[]]
        operators = []
        for token in tokens:
            if token in ("&&", "||"):
                operators.append(token)
                commands.append([])
            else:
                commands[-1].append(token)

        out, err, code = self._simple(commands[0], stdin, privileged)
        for op, cmd in zip(operators, commands[1:]):
            if (op == "&&" and code == 0) or (op == "||" and code != 0):
                o, e, code = self._simple(cmd, stdin, privileged)
                out += o
                err += e
        return out, err, code

    def _simple(self, argv: List[str], stdin: str, privileged: bool) -> Tuple[str, str, int]:
        name, args = argv[0], argv[1:]

        if name in self.fail_commands:
            return "", f"{name}: failed\n", 1

        if name == "hostname":
            return f"{self.hostname}\n", "", 0
        if name == "echo":
            return " ".join(args) + "\n", "", 0
        if name == "cat":
            if not args:
                return stdin, "", 0
            if args[0] not in self.files:
                return "", f"cat: {args[0]}: No such file or directory\n", 1
            return self.files[args[0]].decode(), "", 0
        if name == "false":
            return "", "", 1
        if name == "exit":
            return "", "", int(args[0])
        if name == "test":
            flag, path = args
            found = path in self.files if flag == "-f" else path in self.dirs
            return "", "", 0 if found else 1
        if name == "/bin/mv":
            src, dst = args[-2:]
            if src not in self.files:
                return "", f"mv: cannot stat '{src}': No such file or directory\n", 1
            self.files[dst] = self.files.pop(src)
            self.owners[dst] = self.owners.pop(src, self.user)
            if src in self.modes:
                self.modes[dst] = self.modes.pop(src)
            return "", "", 0
        if name == "/bin/cp":
            src, dst = args[-2:]
            if src not in self.files:
                return "", f"cp: cannot stat '{src}': No such file or directory\n", 1
            self.files[dst] = self.files[src]
            self.owners[dst] = "root" if privileged else self.user
            return "", "", 0
        if name == "/bin/rm":
            self.files.pop(args[-1], None)
            return "", "", 0
        if name == "/bin/chown":
            spec, path = args
            if not privileged:
                return "", f"chown: changing ownership of '{path}': Operation not permitted\n", 1
            if path not in self.files:
                return "", f"chown: cannot access '{path}': No such file or directory\n", 1
            self.owners[path] = spec
            return "", "", 0
        if name in ("/bin/chmod", "chmod"):
            mode, path = args
            if path not in self.files:
                return "", f"chmod: cannot access '{path}': No such file or directory\n", 1
            self.modes[path] = mode
            return "", "", 0
        if argv[0] in self.files:
            # Uploaded script
            return f"ran {argv[0]} {' '.join(args)}".rstrip() + "\n", "", 0

        return "", f"sh: 1: {name}: not found\n", 127


# =============================================================================
# Fake paramiko objects
# =============================================================================


class FakeChannel:
    """Session channel; the command runs when stdin is closed."""

    def __init__(self, remote: FakeRemote):
        self.remote = remote
        self.command: Optional[str] = None
        self.stdin = ""
        self.pty = False
        self.closed = False
        self.status_event = threading.Event()
        self._stdout: List[bytes] = []
        self._stderr: List[bytes] = []
        self._exit_code: Optional[int] = None

    def get_pty(self, *args, **kwargs):
        if self.remote.refuse_pty:
            raise paramiko.SSHException("pty request denied")
        self.pty = True

    def exec_command(self, command: str):
        self.command = command

    def sendall(self, data: bytes):
        self.stdin += data.decode()

    def shutdown_write(self):
        stdout, stderr, code = self.remote.execute(self.command, self.stdin, pty=self.pty)
        if stdout:
            # Deliver in two chunks when possible to exercise streaming
            cut = stdout.find("\n") + 1 or len(stdout)
            self._stdout = [c.encode() for c in (stdout[:cut], stdout[cut:]) if c]
        if stderr:
            self._stderr = [stderr.encode()]
        self._exit_code = code
        self.status_event.set()

    def recv_ready(self) -> bool:
        return bool(self._stdout)

    def recv(self, size: int) -> bytes:
        return self._stdout.pop(0)

    def recv_stderr_ready(self) -> bool:
        return bool(self._stderr)

    def recv_stderr(self, size: int) -> bytes:
        return self._stderr.pop(0)

    def exit_status_ready(self) -> bool:
        return self.status_event.is_set()

    def recv_exit_status(self) -> int:
        return self._exit_code

    def close(self):
        self.closed = True


class FakeSFTP:
    def __init__(self, remote: FakeRemote):
        self.remote = remote

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        pass

    def put(self, local_path: str, remote_path: str):
        if self.remote.fail_puts > 0:
            self.remote.fail_puts -= 1
            raise OSError("Socket is closed")
        with open(local_path, "rb") as f:
            self.remote.files[remote_path] = f.read()
        self.remote.owners[remote_path] = self.remote.user

    def _read(self, remote_path: str) -> bytes:
        if remote_path not in self.remote.files:
            raise FileNotFoundError(2, "No such file", remote_path)
        return self.remote.files[remote_path]

    def get(self, remote_path: str, local_path: str):
        data = self._read(remote_path)
        with open(local_path, "wb") as f:
            f.write(data)

    def getfo(self, remote_path: str, fileobj):
        fileobj.write(self._read(remote_path))


class FakeTransport:
    def __init__(self, remote: FakeRemote):
        self.remote = remote
        self.active = True
        self.channels: List[FakeChannel] = []
        self.tunnels: List[Tuple[str, int]] = []

    def is_active(self) -> bool:
        return self.active

    def open_session(self) -> FakeChannel:
        if not self.active:
            raise paramiko.SSHException("SSH session not active")
        channel = FakeChannel(self.remote)
        self.channels.append(channel)
        return channel

    def open_channel(self, kind, dest_addr, src_addr):
        self.tunnels.append(dest_addr)
        return ("tunnel", dest_addr)


class FakeSSHClient:
    def __init__(self, remote: FakeRemote, host: str, port: int, user: str, sock=None):
        self.remote = remote
        self.host = host
        self.port = port
        self.user = user
        self.sock = sock
        self.transport = FakeTransport(remote)
        self.closed = False

    def get_transport(self) -> FakeTransport:
        return self.transport

    def open_sftp(self) -> FakeSFTP:
        return FakeSFTP(self.remote)

    def close(self):
        self.closed = True
        self.transport.active = False


class FakeSSHNetwork:
    """Replaces remotepool.ssh.session.open_session/open_tunnel."""

    def __init__(self):
        self.remotes: Dict[str, FakeRemote] = {}
        self.clients: List[FakeSSHClient] = []

    def add(self, host: str, **kwargs) -> FakeRemote:
        remote = FakeRemote(hostname=host, **kwargs)
        self.remotes[host] = remote
        return remote

    def open_session(self, host, port, credential, sock=None):
        remote = self.remotes.get(host)
        if remote is None:
            raise OSError(f"[Errno 111] Connection refused: {host}")
        if credential.user != remote.user or (credential.password or None) != remote.password:
            raise paramiko.AuthenticationException("Authentication failed.")
        client = FakeSSHClient(remote, host, port, credential.user, sock=sock)
        self.clients.append(client)
        return client

    def open_tunnel(self, gateway, host, port):
        return gateway.get_transport().open_channel("direct-tcpip", (host, port), ("127.0.0.1", 0))


@pytest.fixture
def network(monkeypatch) -> FakeSSHNetwork:
    net = FakeSSHNetwork()
    monkeypatch.setattr(ssh_session, "open_session", net.open_session)
    monkeypatch.setattr(ssh_session, "open_tunnel", net.open_tunnel)
    return net


@pytest.fixture
def remote(network) -> FakeRemote:
    return network.add("web01")


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore({"web01": Credential("deploy", "secret")})


@pytest.fixture
def auth(store) -> Auth:
    return Auth(stores=[store])
