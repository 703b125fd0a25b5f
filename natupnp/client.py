"""Async UPnP IGD port mapping client."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any
from xml.etree.ElementTree import Element

from natupnp.config import NatUpnpConfig
from natupnp.description import resolve_service
from natupnp.exceptions import NatUpnpError
from natupnp.models import (
    DescriptionFilter,
    EndpointLike,
    GatewayHandle,
    MappingRecord,
    MappingRequest,
)
from natupnp.netutil import find_local_ip
from natupnp.soap import SoapFault, SoapResult, SoapTransport
from natupnp.ssdp import discover_gateway

logger = logging.getLogger(__name__)

# ConflictInMappingEntry
UPNP_CONFLICT_ERROR = "718"

ENTRY_RESPONSE_TAG = "GetGenericPortMappingEntryResponse"

Discoverer = Callable[[int], Awaitable[dict[str, str]]]
Resolver = Callable[[str], Awaitable[GatewayHandle]]


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _first_child(elem: Element) -> Element | None:
    for child in elem:
        return child
    return None


def _child_texts(elem: Element) -> dict[str, str]:
    return {_local_name(child.tag): (child.text or "").strip() for child in elem}


class NatUpnpClient:
    """UPnP IGD client bound to a single gateway.

    The resolved gateway is cached until ``clear_cache`` is called; a stale
    handle surfaces as a SOAP error instead of triggering re-discovery.
    """

    def __init__(
        self,
        timeout: int | None = None,
        *,
        config: NatUpnpConfig | None = None,
        discover: Discoverer | None = None,
        resolve: Resolver | None = None,
        transport: SoapTransport | None = None,
        local_ip_finder: Callable[[], str] | None = None,
    ) -> None:
        """Initialize UPnP client.

        Args:
            timeout: Discovery timeout in milliseconds (default from config, 3000)
            config: Client configuration
            discover: SSDP discoverer, ``(timeout_ms) -> {"location": ...}``
            resolve: Description resolver, ``(location) -> GatewayHandle``
            transport: SOAP transport
            local_ip_finder: Returns the default internal client address

        """
        self.config = config or NatUpnpConfig()
        self.timeout = timeout or self.config.discovery_timeout_ms
        self._discover = discover or discover_gateway
        self._resolve = resolve or resolve_service
        self.transport = transport or SoapTransport(timeout=self.config.soap_timeout)
        self._find_local_ip = local_ip_finder or find_local_ip
        self._gateway: GatewayHandle | None = None
        self.logger = logging.getLogger(__name__)

    @property
    def gateway(self) -> GatewayHandle | None:
        """Cached gateway handle, if any."""
        return self._gateway

    def clear_cache(self) -> None:
        """Forget the cached gateway so the next call re-discovers it."""
        self._gateway = None
        self.logger.debug("Cleared cached UPnP gateway")

    async def resolve_gateway(self) -> GatewayHandle:
        """Return the cached gateway, discovering it on a cache miss.

        Raises:
            DiscoveryError: If SSDP discovery fails
            DescriptionError: If the device description cannot be used

        """
        if self._gateway is not None:
            return self._gateway

        found = await self._discover(self.timeout)
        handle = await self._resolve(found["location"])
        self._gateway = handle
        self.logger.info(
            "Using UPnP gateway %s (%s)", handle.control_url, handle.service_type
        )
        return handle

    async def _invoke(
        self,
        gateway: GatewayHandle,
        action_name: str,
        args: dict[str, Any] | None = None,
    ) -> SoapResult:
        return await self.transport.invoke(
            gateway.control_url, gateway.service_type, action_name, args
        )

    def _build_request(
        self,
        request: MappingRequest | None,
        options: dict[str, Any],
    ) -> MappingRequest:
        if request is not None:
            if options:
                msg = "Pass either a MappingRequest or keyword options, not both"
                raise TypeError(msg)
            return request
        return MappingRequest.from_options(
            default_description=self.config.default_description, **options
        )

    async def map_port(
        self,
        request: MappingRequest | None = None,
        *,
        public: EndpointLike = None,
        private: EndpointLike = None,
        protocol: str | None = None,
        description: str | None = None,
        ttl: int | None = None,
    ) -> Element:
        """Add a port mapping.

        On UPnP error 718 (conflicting entry) the existing mapping is removed
        and the add is retried once.

        Returns:
            SOAP Body element of the AddPortMapping response

        Raises:
            SoapFaultError: If the gateway rejects the mapping
            SoapTransportError: If the control URL cannot be reached

        """
        options = {
            key: value
            for key, value in (
                ("public", public),
                ("private", private),
                ("protocol", protocol),
                ("description", description),
                ("ttl", ttl),
            )
            if value is not None
        }
        req = self._build_request(request, options)
        gateway = await self.resolve_gateway()
        internal_client = req.private.host or self._find_local_ip()

        args = {
            "NewRemoteHost": req.public.host,
            "NewExternalPort": req.public.port,
            "NewProtocol": req.protocol,
            "NewInternalPort": req.private.port,
            "NewInternalClient": internal_client,
            "NewEnabled": 1,
            "NewPortMappingDescription": req.description,
            "NewLeaseDuration": req.ttl,
        }

        result = await self._invoke(gateway, "AddPortMapping", args)
        if isinstance(result, SoapFault) and result.error_code == UPNP_CONFLICT_ERROR:
            self.logger.info(
                "%s port %d already mapped, replacing existing mapping",
                req.protocol,
                req.public.port,
            )
            await self.unmap_port(req)
            result = await self._invoke(gateway, "AddPortMapping", args)

        body = result.unwrap()
        self.logger.info(
            "Mapped %s port %d -> %s:%d (lease: %s s)",
            req.protocol,
            req.public.port,
            internal_client,
            req.private.port,
            req.ttl,
        )
        return body

    async def unmap_port(
        self,
        request: MappingRequest | None = None,
        *,
        public: EndpointLike = None,
        protocol: str | None = None,
    ) -> Element:
        """Delete a port mapping.

        Returns:
            SOAP Body element of the DeletePortMapping response

        """
        options = {
            key: value
            for key, value in (("public", public), ("protocol", protocol))
            if value is not None
        }
        req = self._build_request(request, options)
        gateway = await self.resolve_gateway()

        result = await self._invoke(
            gateway,
            "DeletePortMapping",
            {
                "NewRemoteHost": req.public.host,
                "NewExternalPort": req.public.port,
                "NewProtocol": req.protocol,
            },
        )
        body = result.unwrap()
        self.logger.info("Deleted %s port mapping for port %d", req.protocol, req.public.port)
        return body

    async def get_external_ip(self) -> str | None:
        """Query the gateway's external IP address.

        Returns:
            The address text, or None if the response does not carry one

        """
        gateway = await self.resolve_gateway()
        body = (await self._invoke(gateway, "GetExternalIPAddress")).unwrap()
        for elem in body.iter():
            if _local_name(elem.tag) == "NewExternalIPAddress":
                return (elem.text or "").strip()
        return None

    async def _fetch_entry(
        self, gateway: GatewayHandle, index: int
    ) -> MappingRecord | None:
        """Read one mapping entry; None means the listing is over."""
        body = (
            await self._invoke(
                gateway, "GetGenericPortMappingEntry", {"NewPortMappingIndex": index}
            )
        ).unwrap()
        response = _first_child(body)
        if response is None or ENTRY_RESPONSE_TAG not in _local_name(response.tag):
            return None
        return MappingRecord.from_entry(_child_texts(response))

    async def _enumerate(self) -> list[MappingRecord]:
        gateway = await self.resolve_gateway()
        mappings: list[MappingRecord] = []
        index = 0
        retried_from_one = False

        while True:
            try:
                record = await self._fetch_entry(gateway, index)
            except NatUpnpError as e:
                if index == 0 and not retried_from_one:
                    # Some gateways number their entries from 1
                    self.logger.debug("Mapping index 0 failed (%s), retrying from 1", e)
                    retried_from_one = True
                    index = 1
                    continue
                self.logger.debug("Mapping enumeration ended at index %d: %s", index, e)
                break
            if record is None:
                break
            mappings.append(record)
            index += 1

        return mappings

    async def get_mappings(
        self,
        *,
        local: bool = False,
        local_ip: str | None = None,
        description: DescriptionFilter | None = None,
    ) -> list[MappingRecord]:
        """List the gateway's port mappings.

        Args:
            local: Keep only mappings pointing at this host (``local_ip`` or
                the autodetected address). Takes precedence over ``description``.
            local_ip: Address used by the ``local`` filter
            description: Substring (str) or compiled pattern the mapping
                description must match

        Returns:
            Mapping records in gateway order

        """
        mappings = await self._enumerate()

        if local:
            address = local_ip or self._find_local_ip()
            return [m for m in mappings if m.private.host == address]
        if description:
            return [m for m in mappings if m.matches_description(description)]
        return mappings

    async def delete_mappings(self, description: DescriptionFilter) -> int:
        """Delete every mapping whose description matches.

        Returns:
            Number of mappings deleted

        """
        deleted = 0
        for mapping in await self.get_mappings(description=description):
            try:
                await self.unmap_port(
                    MappingRequest(
                        public=mapping.public,
                        private=mapping.private,
                        protocol=mapping.protocol.upper(),
                    )
                )
            except NatUpnpError as e:
                self.logger.debug(
                    "Failed to delete %s:%d during cleanup: %s",
                    mapping.protocol,
                    mapping.public.port,
                    e,
                )
                continue
            deleted += 1

        if deleted:
            self.logger.info(
                "Deleted %d port mapping(s) matching %r", deleted, description
            )
        return deleted
