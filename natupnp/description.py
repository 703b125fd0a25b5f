"""UPnP device description parsing and WAN service lookup."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urljoin
from xml.etree.ElementTree import Element

import aiohttp
import defusedxml.ElementTree as ET  # noqa: N817
from defusedxml import DefusedXmlException

from natupnp.exceptions import (
    ControlUrlMissing,
    DescriptionFetchError,
    InvalidDeviceDescription,
    ServiceNotFound,
)
from natupnp.models import GatewayHandle

logger = logging.getLogger(__name__)

UPNP_WANIP_SERVICE_TYPE = "urn:schemas-upnp-org:service:WANIPConnection:1"
UPNP_WANPPP_SERVICE_TYPE = "urn:schemas-upnp-org:service:WANPPPConnection:1"

# Priority ordered
WAN_SERVICE_TYPES = (UPNP_WANIP_SERVICE_TYPE, UPNP_WANPPP_SERVICE_TYPE)

DESCRIPTION_FETCH_TIMEOUT = 10.0

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


@dataclass
class ServiceNode:
    """A <service> entry of a device description."""

    service_type: str
    control_url: str = ""


@dataclass
class DeviceNode:
    """A <device> entry with its services and embedded devices."""

    device_type: str = ""
    services: list[ServiceNode] = field(default_factory=list)
    devices: list[DeviceNode] = field(default_factory=list)


@dataclass
class DeviceDescription:
    """Parsed device description document."""

    root: DeviceNode
    url_base: str = ""


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _child(elem: Element, name: str) -> Element | None:
    for child in elem:
        if _local_name(child.tag) == name:
            return child
    return None


def _children(elem: Element, name: str) -> list[Element]:
    return [child for child in elem if _local_name(child.tag) == name]


def _child_text(elem: Element, name: str) -> str:
    child = _child(elem, name)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _first_descendant(elem: Element, name: str) -> Element | None:
    for node in elem.iter():
        if _local_name(node.tag) == name:
            return node
    return None


def _build_device(elem: Element) -> DeviceNode:
    """Copy a <device> subtree into DeviceNode objects (iteratively)."""
    root = DeviceNode()
    pending = [(elem, root)]
    while pending:
        device_elem, node = pending.pop()
        node.device_type = _child_text(device_elem, "deviceType")

        service_list = _child(device_elem, "serviceList")
        if service_list is not None:
            node.services = [
                ServiceNode(
                    service_type=_child_text(service, "serviceType"),
                    control_url=_child_text(service, "controlURL"),
                )
                for service in _children(service_list, "service")
            ]

        device_list = _child(device_elem, "deviceList")
        if device_list is not None:
            for child_elem in _children(device_list, "device"):
                child = DeviceNode()
                node.devices.append(child)
                pending.append((child_elem, child))
    return root


def parse_device_description(xml_text: str | bytes) -> DeviceDescription:
    """Parse a device description document into an in-memory tree.

    Tags are matched by local name, so documents with or without the
    ``urn:schemas-upnp-org:device-1-0`` namespace are accepted. DTDs and
    entity declarations are rejected.

    Raises:
        InvalidDeviceDescription: If the XML is malformed or has no device

    """
    try:
        root = ET.fromstring(xml_text)
    except (ET.ParseError, DefusedXmlException) as e:
        msg = f"Invalid device description: {e}"
        raise InvalidDeviceDescription(msg) from e

    device_elem = _first_descendant(root, "device")
    if device_elem is None:
        msg = "Invalid device description: no device element found"
        raise InvalidDeviceDescription(msg)

    url_base_elem = _first_descendant(root, "URLBase")
    url_base = (url_base_elem.text or "").strip() if url_base_elem is not None else ""

    return DeviceDescription(root=_build_device(device_elem), url_base=url_base)


def find_service(
    device: DeviceNode,
    service_types: tuple[str, ...] = WAN_SERVICE_TYPES,
) -> ServiceNode | None:
    """Depth-first search for the first service of an allowed type.

    Each device's own services are checked before its embedded devices,
    and embedded devices are visited in document order.
    """
    stack = [device]
    while stack:
        current = stack.pop()
        for service in current.services:
            if service.service_type in service_types:
                return service
        stack.extend(reversed(current.devices))
    return None


def resolve_control_url(control_url: str, url_base: str, location: str) -> str:
    """Make a control URL absolute against URLBase or the description URL."""
    if _ABSOLUTE_URL.match(control_url):
        return control_url
    return urljoin(url_base or location, control_url)


async def fetch_device_description(location_url: str) -> bytes:
    """Fetch the device description XML.

    Args:
        location_url: Device description URL from the SSDP LOCATION header

    Returns:
        Raw document bytes; decoding is left to the XML parser

    Raises:
        DescriptionFetchError: On HTTP or network errors

    """
    try:
        async with aiohttp.ClientSession() as session, session.get(
            location_url, timeout=aiohttp.ClientTimeout(total=DESCRIPTION_FETCH_TIMEOUT)
        ) as response:
            if response.status != 200:
                msg = f"Failed to fetch device description: HTTP {response.status}"
                raise DescriptionFetchError(msg, {"url": location_url})
            return await response.read()
    except asyncio.TimeoutError as e:
        msg = f"Timeout fetching device description from {location_url}"
        raise DescriptionFetchError(msg) from e
    except aiohttp.ClientError as e:
        msg = f"Network error fetching device description: {e}"
        raise DescriptionFetchError(msg, {"url": location_url}) from e


def handle_from_description(
    description: DeviceDescription, location_url: str
) -> GatewayHandle:
    """Pick the WAN connection service and build a gateway handle.

    Raises:
        ServiceNotFound: If no allowed service exists in the device tree
        ControlUrlMissing: If the service has no controlURL

    """
    service = find_service(description.root)
    if service is None:
        msg = "UPnP service not found in device description"
        raise ServiceNotFound(msg, {"accepted": list(WAN_SERVICE_TYPES)})

    if not service.control_url:
        msg = "Control URL not found in service description"
        raise ControlUrlMissing(msg, {"service_type": service.service_type})

    control_url = resolve_control_url(
        service.control_url, description.url_base, location_url
    )
    return GatewayHandle(service_type=service.service_type, control_url=control_url)


async def resolve_service(location_url: str) -> GatewayHandle:
    """Fetch a device description and resolve its WAN connection service."""
    xml_text = await fetch_device_description(location_url)
    handle = handle_from_description(parse_device_description(xml_text), location_url)
    logger.debug(
        "Resolved %s control URL: %s", handle.service_type, handle.control_url
    )
    return handle
