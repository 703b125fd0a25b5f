"""Exception hierarchy for natupnp.

Discovery and description errors abort an operation and reach the caller
unchanged. SOAP outcomes are returned as tagged results by the transport and
only become exceptions when a caller unwraps them.
"""

from __future__ import annotations

from typing import Any


class NatUpnpError(Exception):
    """Base exception for all natupnp errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ConfigurationError(NatUpnpError):
    """Configuration loading or validation errors."""


class InvalidPortError(NatUpnpError, ValueError):
    """A port value could not be normalized into 0-65535."""


class DiscoveryError(NatUpnpError):
    """SSDP gateway discovery errors."""


class DiscoveryTimeout(DiscoveryError):
    """No SSDP response arrived before the discovery timeout."""


class DiscoveryTransportError(DiscoveryError):
    """Socket-level failure while sending or receiving the M-SEARCH."""


class NoLocationHeader(DiscoveryError):
    """SSDP response carried no LOCATION header."""


class DescriptionError(NatUpnpError):
    """Device description errors."""


class DescriptionFetchError(DescriptionError):
    """The device description could not be fetched."""


class InvalidDeviceDescription(DescriptionError):
    """The device description has no device element or is not XML."""


class ServiceNotFound(DescriptionError):
    """No WAN connection service in the device tree."""


class ControlUrlMissing(DescriptionError):
    """The matched service has an empty controlURL."""


class SoapError(NatUpnpError):
    """SOAP action errors."""


class SoapFaultError(SoapError):
    """The gateway answered with a SOAP fault."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        error_description: str | None = None,
    ):
        details = {}
        if error_code is not None:
            details["error_code"] = error_code
        super().__init__(message, details)
        self.error_code = error_code
        self.error_description = error_description


class SoapTransportError(SoapError):
    """Network or HTTP failure while talking to the control URL."""


class EnumerationError(NatUpnpError):
    """A port mapping entry could not be read; ends a listing."""
