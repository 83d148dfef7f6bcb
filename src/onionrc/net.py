"""
Local port probing.

Used to decide whether a configured SOCKS port can be bound or whether Tor
should be asked to pick one itself ("auto").
"""

import socket

import structlog

logger = structlog.get_logger(__name__)

LOOPBACK = "127.0.0.1"
PROBE_TIMEOUT = 0.5


def is_local_port_open(port: int, timeout: float = PROBE_TIMEOUT) -> bool:
    """
    Check whether something is already listening on a loopback port.

    This is a best-effort heuristic: the port may be taken or released between
    the probe and Tor binding it. Results are never cached.

    Args:
        port: TCP port to probe
        timeout: Connect timeout in seconds

    Returns:
        True if a connection succeeded (port in use), False otherwise
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            result = sock.connect_ex((LOOPBACK, port))
    except (OSError, OverflowError, ValueError):
        return False

    if result == 0:
        logger.debug("Local port in use", port=port)
        return True
    return False
