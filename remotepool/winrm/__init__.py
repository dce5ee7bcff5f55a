"""WinRM transport - pypsrp-backed connection."""

from remotepool.winrm.connection import WinRMConnection

__all__ = ["WinRMConnection"]
