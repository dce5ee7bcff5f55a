"""
Command result model.

Standardizes remote output from both SSH and WinRM connections.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from remotepool.core.errors import ResultError


ExitCodes = Union[int, Iterable[int], None]


def _accepted(accepted_exit_codes: ExitCodes) -> List[int]:
    if accepted_exit_codes is None:
        return [0]
    if isinstance(accepted_exit_codes, int):
        return [accepted_exit_codes]
    return list(accepted_exit_codes)


@dataclass(frozen=True)
class Result:
    """Output and exit code of a single remote command."""
    command: str
    stdout: str = ""
    stderr: str = ""
    output: str = ""  # stdout and stderr interleaved as received
    exit_code: Optional[int] = None

    def __str__(self) -> str:
        return self.output

    def is_error(self, accepted_exit_codes: ExitCodes = None) -> bool:
        """Whether the exit code falls outside the accepted set (default [0])."""
        return self.exit_code not in _accepted(accepted_exit_codes)

    def is_success(self, accepted_exit_codes: ExitCodes = None) -> bool:
        """Whether the exit code is in the accepted set (default [0])."""
        return not self.is_error(accepted_exit_codes)

    def raise_for_error(self, accepted_exit_codes: ExitCodes = None) -> "Result":
        """
        Raise ResultError if the command failed, otherwise return self.

        Args:
            accepted_exit_codes: Exit code or codes treated as success.

        Raises:
            ResultError: Exit code outside the accepted set.
        """
        if not self.is_error(accepted_exit_codes):
            return self

        raise ResultError(
            f"Error encountered executing {self.command}! Exit code {self.exit_code} was returned "
            f"while a value in {_accepted(accepted_exit_codes)} was expected.\n{self.output}"
        )
