"""Local network interface helpers."""

from __future__ import annotations

import ipaddress
import logging
import socket

import psutil

logger = logging.getLogger(__name__)

FALLBACK_LOCAL_IP = "127.0.0.1"


def find_local_ip() -> str:
    """Return the first non-loopback IPv4 address of this host.

    Falls back to 127.0.0.1 when no such address exists.
    """
    try:
        interfaces = psutil.net_if_addrs()
    except OSError as e:
        logger.debug("Could not enumerate network interfaces: %s", e)
        return FALLBACK_LOCAL_IP

    for name, addrs in interfaces.items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
            except ValueError:
                continue
            if ip.is_loopback:
                continue
            logger.debug("Using %s from interface %s as local address", ip, name)
            return str(ip)

    return FALLBACK_LOCAL_IP
