"""
Execution helpers shared by the SSH and WinRM connections.

Path: remotepool/core/execution.py

Provides:
- command line assembly and shell quoting
- streamed output accumulation with caller callbacks
- the retry wrapper used around every logical command or transfer
- temporary path generation for sudo transfers
"""

import codecs
import logging
import posixpath
import secrets
import time
from typing import Any, Callable, Optional, Sequence, Tuple, Type

from remotepool.core.errors import AuthenticationError
from remotepool.core.result import Result


logger = logging.getLogger(__name__)


# Transport error messages that mean "the session went away underneath us".
# Anything else from the transport layer is treated as a real failure.
CLOSED_STREAM_MESSAGES = (
    "closed stream",
    "socket is closed",
    "ssh session not active",
)

CALLBACK_OPTIONS = ("on_complete", "on_error", "on_output", "on_stderr", "on_stdout", "on_success")


def build_command(command: str, args: Sequence[Any] = ()) -> str:
    """Join a base command and its positional arguments with spaces."""
    if not args:
        return str(command)
    return f"{command} {' '.join(str(a) for a in args)}"


def single_quote(value: str) -> str:
    """Quote a value for a POSIX shell using single quotes."""
    return "'" + str(value).replace("'", "'\"'\"'") + "'"


def plural(count: int, word: str) -> str:
    return f"{count} {word}" if abs(count) == 1 else f"{count} {word}s"


def is_closed_stream(exc: BaseException) -> bool:
    """Whether a transport exception indicates a closed stream."""
    if isinstance(exc, EOFError):
        return True
    message = str(exc).strip().lower()
    return message in CLOSED_STREAM_MESSAGES


def sudo_remote_file_path(path: str, owner_id: int) -> str:
    """
    Generate a temporary remote file name for sudo uploads and downloads.

    The name is built from the destination's base name, the current time,
    the owning connection id and random hex, and always starts with a dot.
    It is relative, so it lands in the login user's home directory.
    """
    temp_file = f"{posixpath.basename(path)}_{int(time.time())}_{owner_id}_{secrets.token_hex(16)}"
    if not temp_file.startswith("."):
        temp_file = f".{temp_file}"
    logger.debug(f"Generated temp file path {temp_file}")
    return temp_file


def permission_cmds(path: str, owner: Optional[str], group: Optional[str], mode: Optional[str]) -> str:
    """
    Generate the command that applies ownership and mode to a remote file.

    Returns an empty string when nothing needs changing.
    """
    cmds = []
    if owner or group:
        spec = f"{owner}:{group}" if owner and group else (owner or f":{group}")
        cmds.append(f"/bin/chown {spec} {single_quote(path)}")
    if mode:
        cmds.append(f"/bin/chmod {mode} {single_quote(path)}")
    cmd = " && ".join(cmds)
    if cmd:
        logger.debug(f"Generated permission commands {cmd}")
    return cmd


class OutputCollector:
    """
    Accumulates streamed command output into a Result.

    Invokes on_stdout/on_stderr/on_output as chunks arrive and
    on_success/on_error/on_complete once the exit code is known.
    Callbacks run on the calling thread.
    """

    def __init__(self, command: str, options: dict, skip_first_stdout: bool = False):
        self.command = command
        self.options = options
        self.skip_first_stdout = skip_first_stdout
        self._stdout = []
        self._stderr = []
        self._output = []
        self._stdout_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._stderr_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def _callback(self, name: str, *args):
        callback = self.options.get(name)
        if callable(callback):
            callback(*args)

    def stdout(self, data):
        if isinstance(data, bytes):
            data = self._stdout_decoder.decode(data)
        if not data:
            return

        # With pty + sudo the first chunk echoes the injected password
        if self.skip_first_stdout:
            self.skip_first_stdout = False
            return

        self._stdout.append(data)
        self._output.append(data)
        self._callback("on_stdout", data)
        self._callback("on_output", data)

    def stderr(self, data):
        if isinstance(data, bytes):
            data = self._stderr_decoder.decode(data)
        if not data:
            return

        self._stderr.append(data)
        self._output.append(data)
        self._callback("on_stderr", data)
        self._callback("on_output", data)

    def result(self, exit_code: Optional[int]) -> Result:
        """Build the Result without firing completion callbacks."""
        return Result(
            command=self.command,
            stdout="".join(self._stdout),
            stderr="".join(self._stderr),
            output="".join(self._output),
            exit_code=exit_code,
        )

    def complete(self, result: Result) -> Result:
        """Fire success/error/complete callbacks for a finished Result."""
        accepted = self.options.get("accepted_exit_codes")
        if result.is_success(accepted):
            self._callback("on_success", result)
        else:
            self._callback("on_error", result)
        self._callback("on_complete", result)
        return result


def with_retries(
    operation: Callable[[], Any],
    description: str,
    retries: int,
    *,
    host: str,
    auth,
    close: Callable[[], None],
    auth_errors: Tuple[Type[BaseException], ...] = (),
    transport_errors: Tuple[Type[BaseException], ...] = (OSError, EOFError),
) -> Any:
    """
    Run one logical command or transfer with retry support.

    Authentication failures evict the host's cached credential and retry
    immediately. Closed-stream transport errors close the connection and
    retry after an exponential backoff starting at one second. Any other
    transport error, and every other exception, propagates unchanged.

    Args:
        operation: Zero-argument callable performing the work.
        description: Text used in log messages (never the raw command).
        retries: Number of retries allowed after the first attempt.
        host: Host whose cached credential is evicted on auth failure.
        auth: Auth resolver owning the credential cache.
        close: Callable that closes the connection before a retry.
        auth_errors: Extra exception types treated as authentication failures.
        transport_errors: Exception types inspected for closed streams.

    Returns:
        Return value of operation.
    """
    sleep_time = 1
    auth_types = (AuthenticationError,) + tuple(auth_errors)

    while True:
        try:
            return operation()
        except auth_types as e:
            logger.debug(
                f"Authentication failed for {description}, retrying with "
                f"{plural(retries, 'attempt')} remaining..."
            )
            retries -= 1
            if retries < 0:
                if isinstance(e, AuthenticationError):
                    raise
                raise AuthenticationError(str(e)) from e

            # Force credential store lookup on the next attempt
            logger.debug(f"Removing current credential for {host} to force credential retrieval.")
            auth.evict(host)
        except transport_errors as e:
            logger.debug(
                f"{type(e).__name__} ({e}) encountered for {description}, retrying with "
                f"{plural(retries, 'attempt')} remaining..."
            )
            retries -= 1
            if not is_closed_stream(e) or retries < 0:
                raise

            close()

            logger.debug(f"Sleeping for {sleep_time} seconds before next retry...")
            time.sleep(sleep_time)
            sleep_time *= 2
