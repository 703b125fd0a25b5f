"""Asyncio client for UPnP Internet Gateway Device port mapping.

Discovers the local router over SSDP, resolves its WAN connection service
and manages NAT port mappings through SOAP actions.
"""

from natupnp.client import NatUpnpClient
from natupnp.config import ConfigManager, NatUpnpConfig
from natupnp.exceptions import (
    ControlUrlMissing,
    DescriptionError,
    DiscoveryError,
    DiscoveryTimeout,
    DiscoveryTransportError,
    EnumerationError,
    InvalidDeviceDescription,
    InvalidPortError,
    NatUpnpError,
    NoLocationHeader,
    ServiceNotFound,
    SoapFaultError,
    SoapTransportError,
)
from natupnp.models import (
    GatewayHandle,
    MappingRecord,
    MappingRequest,
    PortEndpoint,
    normalize_endpoint,
)

__version__ = "1.0.0"

__all__ = [
    "ConfigManager",
    "ControlUrlMissing",
    "DescriptionError",
    "DiscoveryError",
    "DiscoveryTimeout",
    "DiscoveryTransportError",
    "EnumerationError",
    "GatewayHandle",
    "InvalidDeviceDescription",
    "InvalidPortError",
    "MappingRecord",
    "MappingRequest",
    "NatUpnpClient",
    "NatUpnpConfig",
    "NatUpnpError",
    "NoLocationHeader",
    "PortEndpoint",
    "ServiceNotFound",
    "SoapFaultError",
    "SoapTransportError",
    "normalize_endpoint",
]
