"""Data model for gateways, endpoints and port mappings."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from natupnp.exceptions import EnumerationError, InvalidPortError

DEFAULT_DESCRIPTION = "nat-upnp"
DEFAULT_PROTOCOL = "TCP"
SUPPORTED_PROTOCOLS = ("TCP", "UDP")

MAX_PORT = 65535

# Anything normalize_endpoint() understands
EndpointLike = Union["PortEndpoint", int, str, Mapping[str, Any], None]
DescriptionFilter = Union[str, "re.Pattern[str]"]


@dataclass(frozen=True)
class GatewayHandle:
    """Resolved WAN connection service of a gateway."""

    service_type: str
    control_url: str


@dataclass(frozen=True)
class PortEndpoint:
    """One side (public or private) of a port mapping.

    An empty host means unspecified.
    """

    port: int = 0
    host: str = ""


def _coerce_port(value: Any) -> int:
    if isinstance(value, bool):
        msg = f"Invalid port: {value!r}"
        raise InvalidPortError(msg)
    if isinstance(value, int):
        port = value
    elif isinstance(value, float) and value.is_integer():
        port = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        port = int(value.strip())
    else:
        msg = f"Invalid port: {value!r}"
        raise InvalidPortError(msg)

    if not 0 <= port <= MAX_PORT:
        msg = f"Port out of range: {port}"
        raise InvalidPortError(msg, {"port": port})
    return port


def normalize_endpoint(value: EndpointLike) -> PortEndpoint:
    """Normalize a port number, numeric string or {host, port} record.

    Args:
        value: Port specification. ``None`` yields port 0.

    Returns:
        Canonical PortEndpoint

    Raises:
        InvalidPortError: If the port is not an integer in 0-65535

    """
    if value is None:
        return PortEndpoint()
    if isinstance(value, PortEndpoint):
        # Already canonical; re-validate in case it was built by hand
        return PortEndpoint(port=_coerce_port(value.port), host=value.host or "")
    if isinstance(value, Mapping):
        port = value.get("port")
        return PortEndpoint(
            port=_coerce_port(port) if port is not None else 0,
            host=str(value.get("host") or ""),
        )
    return PortEndpoint(port=_coerce_port(value))


def _coerce_lease(value: Any) -> int:
    """Lease duration in whole seconds; None means indefinite (0)."""
    if value is None:
        return 0
    if isinstance(value, int) and not isinstance(value, bool):
        lease = value
    elif isinstance(value, float) and value.is_integer():
        lease = int(value)
    elif isinstance(value, str) and value.strip().removeprefix("-").isdigit():
        lease = int(value.strip())
    else:
        msg = f"Lease duration must be a whole number of seconds, got {value!r}"
        raise ValueError(msg)

    if lease < 0:
        msg = f"Lease duration must be >= 0, got {lease}"
        raise ValueError(msg)
    return lease


@dataclass(frozen=True)
class MappingRequest:
    """A single AddPortMapping/DeletePortMapping request."""

    public: PortEndpoint
    private: PortEndpoint
    protocol: str = DEFAULT_PROTOCOL
    description: str = DEFAULT_DESCRIPTION
    ttl: int = 0

    @classmethod
    def from_options(
        cls,
        public: EndpointLike = None,
        private: EndpointLike = None,
        protocol: str | None = None,
        description: str | None = None,
        ttl: int | None = None,
        default_description: str = DEFAULT_DESCRIPTION,
    ) -> MappingRequest:
        """Build a request from loosely typed caller options.

        A private endpoint without a port reuses the public port.
        """
        remote = normalize_endpoint(public)
        internal = normalize_endpoint(private)
        if internal.port == 0:
            internal = PortEndpoint(port=remote.port, host=internal.host)

        proto = (protocol or DEFAULT_PROTOCOL).upper()
        if proto not in SUPPORTED_PROTOCOLS:
            msg = f"Unsupported protocol: {protocol!r} (expected TCP or UDP)"
            raise ValueError(msg)

        lease = _coerce_lease(ttl)

        return cls(
            public=remote,
            private=internal,
            protocol=proto,
            description=description or default_description,
            ttl=lease,
        )


@dataclass
class MappingRecord:
    """One entry reported by GetGenericPortMappingEntry."""

    public: PortEndpoint
    private: PortEndpoint
    protocol: str
    enabled: bool
    description: str
    ttl: int
    extra: dict[str, str] = field(default_factory=dict, repr=False)

    @classmethod
    def from_entry(cls, fields: Mapping[str, str]) -> MappingRecord:
        """Build a record from the children of a mapping entry response.

        Raises:
            EnumerationError: If a numeric field is malformed

        """
        try:
            public = PortEndpoint(
                port=_coerce_port(fields.get("NewExternalPort", "0") or "0"),
                host=fields.get("NewRemoteHost", "") or "",
            )
            private = PortEndpoint(
                port=_coerce_port(fields.get("NewInternalPort", "0") or "0"),
                host=fields.get("NewInternalClient", "") or "",
            )
            ttl = int((fields.get("NewLeaseDuration", "0") or "0").strip())
        except (InvalidPortError, ValueError) as e:
            msg = f"Malformed port mapping entry: {e}"
            raise EnumerationError(msg, dict(fields)) from e

        known = {
            "NewRemoteHost",
            "NewExternalPort",
            "NewProtocol",
            "NewInternalPort",
            "NewInternalClient",
            "NewEnabled",
            "NewPortMappingDescription",
            "NewLeaseDuration",
        }
        return cls(
            public=public,
            private=private,
            protocol=(fields.get("NewProtocol", "") or "").lower(),
            enabled=(fields.get("NewEnabled", "") or "").strip() == "1",
            description=fields.get("NewPortMappingDescription", "") or "",
            ttl=ttl,
            extra={k: v for k, v in fields.items() if k not in known},
        )

    def matches_description(self, pattern: DescriptionFilter) -> bool:
        """Substring match for strings, ``search`` for compiled patterns."""
        if isinstance(pattern, re.Pattern):
            return pattern.search(self.description) is not None
        return pattern in self.description
