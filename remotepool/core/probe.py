"""
Protocol liveness detection.

Decides whether a host speaks SSH or WinRM by probing well-known ports.
"""

import logging
import socket
from typing import Optional

from remotepool.core.config import get_config


logger = logging.getLogger(__name__)

SSH_PORT = 22
WINRM_PORT = 5985


def port_open(host: str, port: int, timeout: Optional[float] = None) -> bool:
    """
    Check if a remote port accepts TCP connections.

    Args:
        host: Remote host.
        port: Remote port.
        timeout: Seconds to wait (default: connection.probe_timeout).

    Returns:
        True if the port is open, False otherwise.
    """
    if timeout is None:
        timeout = get_config().connection.probe_timeout

    logger.debug(f"Checking if {host}:{port} is accessible")
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except (OSError, ValueError):
        logger.debug(f"{host}:{port} is inaccessible")
        return False


def host_type(host: str, timeout: Optional[float] = None) -> Optional[str]:
    """
    Determine remote host type by checking common ports.

    Returns:
        "ssh", "winrm", or None if it cannot be determined.
    """
    if port_open(host, SSH_PORT, timeout=timeout):
        return "ssh"

    if port_open(host, WINRM_PORT, timeout=timeout):
        return "winrm"

    return None
