"""Host port reservation for new pool members."""

import socket


def reserve_free_port(host: str = "localhost") -> int:
    """
    Ask the OS for a free TCP port.

    The listening socket is closed before returning, so the port is only
    likely, not guaranteed, to still be free when Docker binds it.

    Args:
        host: Interface to bind on

    Returns:
        Port number
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        sock.listen(1)
        return sock.getsockname()[1]


def reserve_port_pair(host: str = "localhost") -> tuple[int, int]:
    """
    Reserve distinct HTTP and SSH host ports.

    Returns:
        Tuple of (http_port, ssh_port)
    """
    http_port = reserve_free_port(host)
    ssh_port = reserve_free_port(host)
    while ssh_port == http_port:
        ssh_port = reserve_free_port(host)
    return http_port, ssh_port
