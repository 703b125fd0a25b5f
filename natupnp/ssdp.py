"""SSDP discovery of UPnP Internet Gateway Devices."""

from __future__ import annotations

import asyncio
import logging
import socket

from natupnp.exceptions import (
    DiscoveryTimeout,
    DiscoveryTransportError,
    NoLocationHeader,
)

logger = logging.getLogger(__name__)

# SSDP constants
SSDP_MULTICAST_IP = "239.255.255.250"
SSDP_MULTICAST_PORT = 1900
SSDP_MULTICAST_TTL = 2
SSDP_MX = 3
SSDP_RECV_BUFSIZE = 4096

UPNP_IGD_DEVICE_TYPE = "urn:schemas-upnp-org:device:InternetGatewayDevice:1"

DEFAULT_TIMEOUT_MS = 3000


def build_msearch_request(search_target: str = UPNP_IGD_DEVICE_TYPE) -> bytes:
    """Build SSDP M-SEARCH request (UPnP Device Architecture 1.1).

    Args:
        search_target: ST (Search Target) header value

    Returns:
        M-SEARCH request bytes

    """
    msg = (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {SSDP_MULTICAST_IP}:{SSDP_MULTICAST_PORT}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"MX: {SSDP_MX}\r\n"
        f"ST: {search_target}\r\n"
        "\r\n"
    )
    return msg.encode("utf-8")


def parse_ssdp_response(response: bytes) -> dict[str, str]:
    """Parse SSDP response headers.

    Args:
        response: SSDP response bytes

    Returns:
        Dictionary of header fields, keys lowercased

    """
    headers: dict[str, str] = {}
    lines = response.decode("utf-8", errors="ignore").splitlines()
    for line in lines[1:]:  # Skip status line
        if ":" in line:
            key, value = line.split(":", 1)
            headers[key.strip().lower()] = value.strip()
    return headers


def _create_socket() -> socket.socket:
    return socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)


def _prepare_socket(sock: socket.socket) -> None:
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, SSDP_MULTICAST_TTL)
    sock.bind(("", 0))
    # Required for loop.sock_sendto / loop.sock_recvfrom
    sock.setblocking(False)


async def _exchange(
    sock: socket.socket, address: tuple[str, int]
) -> tuple[bytes, tuple[str, int]]:
    loop = asyncio.get_running_loop()
    request = build_msearch_request()
    sent = await loop.sock_sendto(sock, request, address)
    logger.debug("Sent M-SEARCH (%d bytes) to %s:%d", sent, address[0], address[1])
    return await loop.sock_recvfrom(sock, SSDP_RECV_BUFSIZE)


async def discover_gateway(
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    address: tuple[str, int] = (SSDP_MULTICAST_IP, SSDP_MULTICAST_PORT),
) -> dict[str, str]:
    """Send one M-SEARCH and wait for the first response.

    The socket is scoped to this call and closed on every exit path.
    Callers retry by calling again.

    Args:
        timeout_ms: Time to wait for a response, measured from call start
        address: Destination of the M-SEARCH datagram

    Returns:
        Device info dictionary with 'location' (plus 'server' and 'usn')

    Raises:
        DiscoveryTimeout: If nothing arrives within ``timeout_ms``
        DiscoveryTransportError: On socket errors
        NoLocationHeader: If the response has no LOCATION header

    """
    try:
        sock = _create_socket()
    except OSError as e:
        msg = f"Could not open SSDP socket: {e}"
        raise DiscoveryTransportError(msg) from e

    try:
        _prepare_socket(sock)
        data, addr = await asyncio.wait_for(
            _exchange(sock, address), timeout=timeout_ms / 1000
        )
    except asyncio.TimeoutError:
        msg = f"Gateway discovery timed out after {timeout_ms} ms"
        raise DiscoveryTimeout(msg, {"timeout_ms": timeout_ms}) from None
    except OSError as e:
        msg = f"SSDP discovery failed: {e}"
        raise DiscoveryTransportError(msg) from e
    finally:
        sock.close()

    logger.debug("Received SSDP response from %s:%d (%d bytes)", addr[0], addr[1], len(data))

    headers = parse_ssdp_response(data)
    location = headers.get("location", "")
    if not location:
        msg = "No LOCATION header found in SSDP response"
        raise NoLocationHeader(msg, {"from": addr[0]})

    logger.info(
        "Found UPnP gateway at %s (server: %s)",
        location,
        headers.get("server", "unknown"),
    )
    return {
        "location": location,
        "server": headers.get("server", ""),
        "usn": headers.get("usn", ""),
    }
