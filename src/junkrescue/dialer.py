"""Dialers: functions that open a TCP stream, directly or through a proxy."""

from __future__ import annotations

import logging
import socket
from collections.abc import Callable
from typing import Optional

import socks

from junkrescue.errors import ProxyConfigError
from junkrescue.resolver import ProxyDescriptor, ProxyKind

logger = logging.getLogger(__name__)

# (host, port, timeout) -> connected socket
Dialer = Callable[[str, int, Optional[float]], socket.socket]

_SOCKS_TYPES = {
    ProxyKind.HTTPS: socks.HTTP,
    ProxyKind.SOCKS4: socks.SOCKS4,
    ProxyKind.SOCKS5: socks.SOCKS5,
}


def direct_dial(host: str, port: int, timeout: float | None = None) -> socket.socket:
    """Open a plain TCP connection."""
    if timeout is not None:
        return socket.create_connection((host, port), timeout)
    return socket.create_connection((host, port))


def dialer_for(proxy: ProxyDescriptor | None) -> Dialer:
    """Return a dialer for the given proxy descriptor.

    Args:
        proxy: Proxy to tunnel through, or None for a direct connection

    Returns:
        Callable taking (host, port, timeout) and returning a connected socket

    Raises:
        ProxyConfigError: If the proxy kind is unknown or its address is unusable
    """
    if proxy is None or proxy.kind is ProxyKind.NONE:
        return direct_dial

    proxy_type = _SOCKS_TYPES.get(proxy.kind)
    if proxy_type is None:
        raise ProxyConfigError(f"Unsupported proxy type: {proxy.kind}")

    proxy_host, proxy_port = proxy.host_port()

    # SOCKS4 has no password authentication
    username = password = None
    if proxy.kind is not ProxyKind.SOCKS4 and proxy.username:
        username, password = proxy.username, proxy.password or ""

    logger.info(f"Using {proxy.kind.value.upper()} proxy: {proxy_host}:{proxy_port}")

    def dial(host: str, port: int, timeout: float | None = None) -> socket.socket:
        return socks.create_connection(
            (host, port),
            timeout=timeout,
            proxy_type=proxy_type,
            proxy_addr=proxy_host,
            proxy_port=proxy_port,
            proxy_username=username,
            proxy_password=password,
        )

    return dial
