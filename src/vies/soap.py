"""SOAP 1.1 codec for the VIES checkVat operation.

Builds the request envelope, detects and classifies SOAP faults, and parses
checkVatResponse bodies. No I/O here: the client feeds raw bytes in.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import NamedTuple

from lxml import etree

from src.vies.exceptions import ServiceUnavailableError, VatValidationError, ViesError
from src.vies.schemas import ValidationResult

logger = logging.getLogger(__name__)

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
CHECK_VAT_NS = "urn:ec.europa.eu:taxud:vies:services:checkVat:types"

SOAP_HEADERS: dict[str, str] = {
    "Content-Type": "text/xml; charset=utf-8",
    "SOAPAction": "",
}

_FAULT_MARKERS = ("soap:Fault", "faultstring")

# Faults that mean VIES itself (or the member state behind it) is down
PROBE_UNAVAILABLE_FAULTS = ("SERVICE_UNAVAILABLE", "MS_UNAVAILABLE", "TIMEOUT")

# Never fetch DTDs or expand external entities from an upstream response
_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


class FaultRule(NamedTuple):
    """One row of the fault classification table."""

    marker: str
    error_type: type[ViesError]
    message: str


# Scanned top to bottom, first match wins.
FAULT_RULES: tuple[FaultRule, ...] = (
    FaultRule(
        "INVALID_INPUT",
        VatValidationError,
        "Invalid input: The provided CountryCode is invalid or the VAT number is empty",
    ),
    FaultRule(
        "GLOBAL_MAX_CONCURRENT_REQ",
        ServiceUnavailableError,
        "Your request cannot be processed due to high traffic on the web application. "
        "Please try again later.",
    ),
    FaultRule(
        "MS_MAX_CONCURRENT_REQ",
        ServiceUnavailableError,
        "Your request cannot be processed due to high traffic towards the Member State "
        "you are trying to reach. Please try again later.",
    ),
    FaultRule(
        "SERVICE_UNAVAILABLE",
        ServiceUnavailableError,
        "VIES service is temporarily unavailable. An error was encountered either at the "
        "network level or the Web application level. Please try again later.",
    ),
    FaultRule(
        "MS_UNAVAILABLE",
        ServiceUnavailableError,
        "The application at the Member State is not replying or not available. "
        "Please try again later.",
    ),
    FaultRule(
        "TIMEOUT",
        ServiceUnavailableError,
        "The application did not receive a reply within the allocated time period. "
        "Please try again later.",
    ),
)


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


def build_check_vat_envelope(country_code: str, vat_number: str) -> bytes:
    """Serialize a checkVat request envelope (UTF-8, with XML declaration)."""
    envelope = etree.Element(
        etree.QName(SOAP_ENV_NS, "Envelope"),
        nsmap={"soap": SOAP_ENV_NS, "urn": CHECK_VAT_NS},
    )
    body = etree.SubElement(envelope, etree.QName(SOAP_ENV_NS, "Body"))
    check_vat = etree.SubElement(body, etree.QName(CHECK_VAT_NS, "checkVat"))
    etree.SubElement(check_vat, etree.QName(CHECK_VAT_NS, "countryCode")).text = country_code
    etree.SubElement(check_vat, etree.QName(CHECK_VAT_NS, "vatNumber")).text = vat_number
    return etree.tostring(envelope, xml_declaration=True, encoding="utf-8")


# ---------------------------------------------------------------------------
# Faults
# ---------------------------------------------------------------------------


def is_fault(body: str) -> bool:
    """Cheap textual check for a SOAP fault payload."""
    return any(marker in body for marker in _FAULT_MARKERS)


def extract_fault_string(content: bytes) -> str | None:
    """Return the ``faultstring`` text of a fault envelope, or None if absent.

    Raises ``etree.XMLSyntaxError`` if *content* is not XML.
    """
    root = etree.fromstring(content, parser=_PARSER)
    nodes = root.xpath(
        "//soap:Fault/faultstring | //*[local-name()='faultstring']",
        namespaces={"soap": SOAP_ENV_NS},
    )
    if not nodes:
        return None
    return "".join(nodes[0].itertext()).strip()


def classify_fault(fault_string: str) -> ViesError:
    """Map a VIES ``faultstring`` to the error to raise."""
    for rule in FAULT_RULES:
        if rule.marker in fault_string:
            return rule.error_type(rule.message)
    return VatValidationError(f"VIES service returned an error: {fault_string}")


def is_unavailability_fault(body: str) -> bool:
    """True if a fault body says VIES or the member state is down."""
    return any(code in body for code in PROBE_UNAVAILABLE_FAULTS)


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------


def parse_check_vat_response(content: bytes, country_code: str, vat_number: str) -> ValidationResult:
    """Parse a checkVatResponse envelope into a ValidationResult.

    Country code and VAT number are taken from the request, not the response.
    """
    root = etree.fromstring(content, parser=_PARSER)

    raw_valid = _find_text(root, "valid")
    valid = raw_valid is not None and raw_valid.strip().lower() == "true"

    request_date: date | None = None
    raw_date = _find_text(root, "requestDate")
    if raw_date:
        try:
            # xsd:date, usually with a zone suffix: "2024-05-17+02:00"
            request_date = date.fromisoformat(raw_date.strip()[:10])
        except ValueError:
            logger.debug("Could not parse VIES requestDate: %s", raw_date)

    return ValidationResult(
        is_valid=valid,
        country_code=country_code,
        vat_number=vat_number,
        name=_find_text(root, "name"),
        address=_find_text(root, "address"),
        request_date=request_date,
    )


def _find_text(root: etree._Element, tag: str) -> str | None:
    node = root.find(f".//{{{CHECK_VAT_NS}}}{tag}")
    if node is None:
        return None
    return node.text
