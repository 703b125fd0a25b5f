"""SOAP envelope construction, dispatch and fault classification.

``SoapTransport.invoke`` never raises for protocol or network failures; it
returns one of ``SoapSuccess``, ``SoapFault`` or ``SoapTransportFailure`` so
callers can branch on a UPnP error code without parsing messages.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union
from xml.etree.ElementTree import Element
from xml.sax.saxutils import escape

import aiohttp
import defusedxml.ElementTree as ET  # noqa: N817
from defusedxml import DefusedXmlException

from natupnp.exceptions import SoapFaultError, SoapTransportError

logger = logging.getLogger(__name__)

SOAP_ENVELOPE_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP_ENCODING_STYLE = "http://schemas.xmlsoap.org/soap/encoding/"

# Common UPnP IGD error codes
UPNP_ERROR_HINTS = {
    "402": "Invalid Args - Check parameter formats",
    "501": "Action Failed - Router rejected the request",
    "606": "Action not authorized",
    "713": "SpecifiedArrayIndexInvalid - No mapping at this index",
    "714": "NoSuchEntryInArray - Port mapping not found",
    "715": "WildCardNotPermittedInSrcIP - Invalid remote host parameter",
    "716": "WildCardNotPermittedInExtPort - Invalid external port",
    "718": "ConflictInMappingEntry - Port mapping conflict (port may be in use)",
    "724": "SamePortValuesRequired - Internal and external ports must match for this router",
    "725": "OnlyPermanentLeasesSupported - Router only supports permanent mappings",
    "726": "RemoteHostOnlySupportsWildcard - Remote host must be empty",
}


@dataclass(frozen=True)
class SoapSuccess:
    """Successful action; ``body`` is the SOAP Body element."""

    body: Element

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> Element:
        return self.body


@dataclass(frozen=True)
class SoapFault:
    """SOAP fault. ``error_code`` is None when no UPnPError detail exists."""

    error_code: str | None = None
    error_description: str | None = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def hint(self) -> str:
        return UPNP_ERROR_HINTS.get(self.error_code or "", "")

    def unwrap(self) -> Element:
        if self.error_code is None:
            raise SoapFaultError("SOAP fault encountered")
        msg = f"UPnPError {self.error_code}: {self.error_description or ''}".rstrip()
        if self.hint:
            msg = f"{msg} ({self.hint})"
        raise SoapFaultError(msg, self.error_code, self.error_description)


@dataclass(frozen=True)
class SoapTransportFailure:
    """The request never produced a usable SOAP response."""

    reason: str
    status: int | None = None

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> Element:
        details = {"status": self.status} if self.status is not None else None
        raise SoapTransportError(self.reason, details)


SoapResult = Union[SoapSuccess, SoapFault, SoapTransportFailure]


def build_soap_envelope(
    service_type: str,
    action_name: str,
    args: Mapping[str, Any] | None = None,
) -> str:
    """Build SOAP 1.1 request body.

    Argument values are converted with ``str`` and XML-escaped.

    Args:
        service_type: UPnP service type, used as the action namespace
        action_name: SOAP action name (e.g., "AddPortMapping")
        args: Action arguments, in order

    Returns:
        SOAP request XML string

    """
    args_xml = "".join(
        f"<{key}>{escape(str(value))}</{key}>" for key, value in (args or {}).items()
    )
    namespace = escape(service_type, {'"': "&quot;"})
    return (
        '<?xml version="1.0"?>'
        f'<s:Envelope xmlns:s="{SOAP_ENVELOPE_NS}" '
        f's:encodingStyle="{SOAP_ENCODING_STYLE}">'
        "<s:Body>"
        f'<u:{action_name} xmlns:u="{namespace}">'
        f"{args_xml}"
        f"</u:{action_name}>"
        "</s:Body>"
        "</s:Envelope>"
    )


def build_soap_headers(service_type: str, action_name: str) -> dict[str, str]:
    return {
        "Content-Type": 'text/xml; charset="utf-8"',
        "SOAPAction": f'"{service_type}#{action_name}"',
    }


def _find_local(elem: Element, name: str) -> Element | None:
    for node in elem.iter():
        tag = node.tag
        if (tag.rsplit("}", 1)[-1] if "}" in tag else tag) == name:
            return node
    return None


def _text(elem: Element | None) -> str:
    if elem is None or elem.text is None:
        return ""
    return elem.text.strip()


def parse_soap_response(
    response_xml: str | bytes, status: int | None = None
) -> SoapResult:
    """Classify a SOAP response body, whatever the HTTP status was.

    Raw bytes are decoded by the XML parser, so the document's own
    encoding declaration applies. Documents with a DTD or entity
    declarations are refused.
    """
    try:
        root = ET.fromstring(response_xml)
    except (ET.ParseError, DefusedXmlException) as e:
        reason = f"SOAP response is not valid XML: {e}"
        if status is not None and status != 200:
            reason = f"SOAP action failed: HTTP {status} (response not parseable as XML)"
        return SoapTransportFailure(reason, status)

    fault = root.find(f".//{{{SOAP_ENVELOPE_NS}}}Fault")
    if fault is not None:
        upnp_error = _find_local(fault, "UPnPError")
        if upnp_error is None:
            return SoapFault()
        return SoapFault(
            error_code=_text(_find_local(upnp_error, "errorCode")),
            error_description=_text(_find_local(upnp_error, "errorDescription")),
        )

    if root.tag == f"{{{SOAP_ENVELOPE_NS}}}Body":
        return SoapSuccess(root)
    body = root.find(f".//{{{SOAP_ENVELOPE_NS}}}Body")
    if body is None:
        return SoapTransportFailure("SOAP response has no Body element", status)
    return SoapSuccess(body)


class SoapTransport:
    """Posts SOAP actions to a control URL over aiohttp."""

    def __init__(self, timeout: float | None = None) -> None:
        """Initialize SOAP transport.

        Args:
            timeout: Total request timeout in seconds; None keeps
                aiohttp's default

        """
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    async def invoke(
        self,
        control_url: str,
        service_type: str,
        action_name: str,
        args: Mapping[str, Any] | None = None,
    ) -> SoapResult:
        """Send a SOAP action and classify the response."""
        envelope = build_soap_envelope(service_type, action_name, args)
        headers = build_soap_headers(service_type, action_name)
        kwargs: dict[str, Any] = {"data": envelope, "headers": headers}
        if self.timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession() as session, session.post(
                control_url, **kwargs
            ) as resp:
                response_xml = await resp.read()
                status = resp.status
        except asyncio.TimeoutError:
            return SoapTransportFailure(f"{action_name} timed out")
        except aiohttp.ClientError as e:
            return SoapTransportFailure(f"Error sending SOAP action {action_name}: {e}")

        result = parse_soap_response(response_xml, status)
        if isinstance(result, SoapFault):
            self.logger.debug(
                "%s returned SOAP fault (HTTP %d): code=%s description=%s",
                action_name,
                status,
                result.error_code,
                result.error_description,
            )
        elif isinstance(result, SoapTransportFailure):
            self.logger.debug("%s failed: %s", action_name, result.reason)
        return result
