"""
Port allocation for the simulator's shared HTTP listener.

A port is considered free when a listening socket can be bound to it and
released again. Probing is fail-fast: there is no retry loop, and an
explicitly requested port is never silently swapped for another one.
"""

import errno
import socket

from ..exceptions import PortUnavailableError
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

BASE_PORT = 8900
MAX_PORT = 9999


def is_port_available(port: int, host: str = "0.0.0.0") -> bool:
    """
    Probe a port by binding and immediately releasing it.

    Args:
        port: TCP port to probe
        host: Address to bind the probe socket to

    Returns:
        bool: True if the bind succeeded, False if the address is in use or not permitted
    """
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        probe.bind((host, port))
        probe.listen(1)
    except OSError as e:
        if e.errno not in (errno.EADDRINUSE, errno.EACCES, errno.EADDRNOTAVAIL):
            logger.debug("Unexpected error probing port", port=port, host=host, error=str(e))
        return False
    finally:
        probe.close()
    return True


def resolve_port(requested: int | None = None, host: str = "0.0.0.0") -> int:
    """
    Resolve the port the simulator will listen on.

    Args:
        requested: Port the user asked for, or None for dynamic allocation
        host: Address the listener will bind to

    Returns:
        int: A port that could be bound at probe time

    Raises:
        PortUnavailableError: If the requested port is busy, or no port in
            [BASE_PORT, MAX_PORT] is free when none was requested
    """
    if requested is not None:
        if not is_port_available(requested, host):
            raise PortUnavailableError(requested)
        logger.info("Using requested port", port=requested, host=host)
        return requested

    for port in range(BASE_PORT, MAX_PORT + 1):
        if is_port_available(port, host):
            logger.info("Allocated port", port=port, host=host)
            return port

    raise PortUnavailableError(BASE_PORT, range_end=MAX_PORT)
