"""Tests for remotepool.core.execution helpers and the retry wrapper."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from remotepool.core import execution
from remotepool.core.errors import AuthenticationError, MissingCredential
from remotepool.core.execution import (
    OutputCollector,
    build_command,
    is_closed_stream,
    permission_cmds,
    single_quote,
    sudo_remote_file_path,
    with_retries,
)


class FakeAuthError(Exception):
    pass


class TestCommandHelpers:
    def test_build_command(self):
        assert build_command("ls") == "ls"
        assert build_command("ls", ["-l", "/tmp"]) == "ls -l /tmp"
        assert build_command("sleep", [5]) == "sleep 5"

    def test_single_quote(self):
        assert single_quote("plain") == "'plain'"
        assert single_quote("it's") == "'it'\"'\"'s'"

    @pytest.mark.parametrize("owner, group, mode, expected", [
        (None, None, None, ""),
        ("root", None, None, "/bin/chown root '/etc/x'"),
        (None, "wheel", None, "/bin/chown :wheel '/etc/x'"),
        ("root", "wheel", None, "/bin/chown root:wheel '/etc/x'"),
        (None, None, "0644", "/bin/chmod 0644 '/etc/x'"),
        ("root", None, "0600", "/bin/chown root '/etc/x' && /bin/chmod 0600 '/etc/x'"),
    ])
    def test_permission_cmds(self, owner, group, mode, expected):
        assert permission_cmds("/etc/x", owner, group, mode) == expected

    def test_sudo_remote_file_path(self, monkeypatch):
        monkeypatch.setattr(execution.time, "time", lambda: 1700000000.5)
        path = sudo_remote_file_path("/etc/app.conf", 42)
        assert path.startswith(".app.conf_1700000000_42_")
        assert len(path.rsplit("_", 1)[1]) == 32
        assert sudo_remote_file_path("/etc/app.conf", 42) != path

    def test_hidden_file_is_not_double_dotted(self):
        assert sudo_remote_file_path("/home/u/.bashrc", 1).startswith(".bashrc_")

    @pytest.mark.parametrize("exc, expected", [
        (EOFError(), True),
        (OSError("Socket is closed"), True),
        (OSError("closed stream"), True),
        (Exception("SSH session not active"), True),
        (OSError("Connection refused"), False),
        (TimeoutError("timed out"), False),
    ])
    def test_is_closed_stream(self, exc, expected):
        assert is_closed_stream(exc) is expected


class TestOutputCollector:
    def test_accumulates_and_decodes(self):
        collector = OutputCollector("cmd", {})
        collector.stdout(b"caf\xc3")
        collector.stdout(b"\xa9\n")
        collector.stderr("warn\n")
        result = collector.result(0)
        assert result.stdout == "café\n"
        assert result.stderr == "warn\n"
        assert result.output == "café\nwarn\n"

    def test_skip_first_stdout(self):
        collector = OutputCollector("cmd", {}, skip_first_stdout=True)
        collector.stdout("secret\r\n")
        collector.stdout("real\n")
        assert collector.result(0).stdout == "real\n"

    def test_completion_callbacks(self):
        on_success, on_error, on_complete = MagicMock(), MagicMock(), MagicMock()
        options = {"on_success": on_success, "on_error": on_error, "on_complete": on_complete}
        collector = OutputCollector("cmd", options)
        result = collector.complete(collector.result(2))
        on_success.assert_not_called()
        on_error.assert_called_once_with(result)
        on_complete.assert_called_once_with(result)


class TestWithRetries:
    @pytest.fixture
    def auth(self):
        return MagicMock()

    def run(self, operation, auth, retries=3, close=None):
        return with_retries(
            operation,
            "test",
            retries,
            host="web01",
            auth=auth,
            close=close or MagicMock(),
            auth_errors=(FakeAuthError,),
        )

    def test_success_first_time(self, auth, sleeps):
        assert self.run(lambda: "ok", auth) == "ok"
        assert sleeps == []
        auth.evict.assert_not_called()

    def test_auth_failure_evicts_and_retries_immediately(self, auth, sleeps):
        operation = MagicMock(side_effect=[FakeAuthError("denied"), "ok"])
        assert self.run(operation, auth) == "ok"
        auth.evict.assert_called_once_with("web01")
        assert sleeps == []

    def test_auth_failure_exhausted_is_translated(self, auth):
        operation = MagicMock(side_effect=FakeAuthError("denied"))
        with pytest.raises(AuthenticationError, match="denied") as excinfo:
            self.run(operation, auth, retries=2)
        assert operation.call_count == 3
        assert isinstance(excinfo.value.__cause__, FakeAuthError)

    def test_zero_retries_means_one_attempt(self, auth):
        operation = MagicMock(side_effect=AuthenticationError("sudo"))
        with pytest.raises(AuthenticationError, match="sudo"):
            self.run(operation, auth, retries=0)
        assert operation.call_count == 1

    def test_closed_stream_closes_and_backs_off(self, auth, sleeps):
        close = MagicMock()
        operation = MagicMock(side_effect=[EOFError(), OSError("Socket is closed"), EOFError(), "ok"])
        assert self.run(operation, auth, retries=5, close=close) == "ok"
        assert sleeps == [1, 2, 4]
        assert close.call_count == 3

    def test_other_transport_error_propagates(self, auth, sleeps):
        close = MagicMock()
        operation = MagicMock(side_effect=ConnectionRefusedError("refused"))
        with pytest.raises(ConnectionRefusedError):
            self.run(operation, auth, close=close)
        assert operation.call_count == 1
        close.assert_not_called()

    def test_non_transport_errors_propagate(self, auth):
        operation = MagicMock(side_effect=MissingCredential("none"))
        with pytest.raises(MissingCredential):
            self.run(operation, auth)
        assert operation.call_count == 1
