"""Protocol definitions shared by the SSH and WinRM connections."""

from typing import Any, Optional, Protocol

from remotepool.core.result import Result


class Target(Protocol):
    """Anything credentials can be resolved for: a host plus metadata."""

    host: str

    def get(self, key: str, default: Any = None) -> Any: ...


class Connection(Protocol):
    """Capability interface implemented by SSHConnection and WinRMConnection."""

    REMOTE_PORT: int
    host: str
    port: int

    @property
    def type(self) -> str: ...

    def get(self, key: str, default: Any = None) -> Any: ...

    def port_open(self) -> bool: ...

    def run(self, command: str, *args: Any, **options: Any) -> Result: ...

    def run_script(self, local_path: str, remote_path: str, *args: Any, **options: Any) -> Result: ...

    def upload(self, local_path: str, remote_path: str, **options: Any) -> str: ...

    def download(self, remote_path: str, local_path: Optional[str] = None, **options: Any) -> str: ...

    def file_exist(self, remote_path: str, **options: Any) -> bool: ...

    def close(self) -> None: ...
