"""VAT validation service — orchestrates local Belgian checks + VIES client.

This is the single place where upstream failures are downgraded into an
``is_valid=False`` result. Callers only ever see InvalidArgumentError,
and only for blank input.
"""

from __future__ import annotations

import logging

from src.decoders.belgian_vat import (
    BELGIUM,
    clean_vat_number,
    validate_be_checksum,
    validate_be_format,
)
from src.vies.client import ViesClient, mask_vat, vies_client
from src.vies.exceptions import InvalidArgumentError, ServiceUnavailableError
from src.vies.schemas import ServiceStatus, ValidationRequest, ValidationResult

logger = logging.getLogger(__name__)

# EU member states served by VIES (Greece is "EL" in VIES, not "GR")
EU_MEMBER_STATES: tuple[str, ...] = (
    "AT", "BE", "BG", "CY", "CZ", "DE", "DK", "EE", "EL",
    "ES", "FI", "FR", "HR", "HU", "IE", "IT", "LT", "LU",
    "LV", "MT", "NL", "PL", "PT", "RO", "SE", "SI", "SK",
)

UNAVAILABLE_MESSAGE = "VIES service is currently unavailable. Please try again later."
BE_FORMAT_MESSAGE = "Invalid Belgian VAT number format. Expected format: BE0123456789 (10 digits)"
BE_CHECKSUM_MESSAGE = "Invalid Belgian VAT number checksum"


class VatValidationService:
    """Validates VAT numbers: local Belgian checks first, then VIES."""

    def __init__(self, client: ViesClient) -> None:
        self._client = client

    async def validate(self, request: ValidationRequest) -> ValidationResult:
        """Validate a VAT number for any VIES country.

        Steps:
        1. Reject blank country code / VAT number (InvalidArgumentError)
        2. Uppercase country code, clean VAT number
        3. BE only: local format + modulo-97 checksum, no network on failure
        4. Ask VIES; upstream failures become is_valid=False results
        """
        if not request.country_code or not request.country_code.strip():
            msg = "Country code is required"
            raise InvalidArgumentError(msg)
        if not request.vat_number or not request.vat_number.strip():
            msg = "VAT number is required"
            raise InvalidArgumentError(msg)

        country_code = request.country_code.strip().upper()
        vat_number = clean_vat_number(request.vat_number, country_code)

        if country_code == BELGIUM:
            if not validate_be_format(vat_number):
                logger.info("Rejected Belgian VAT %s: bad format", mask_vat(vat_number))
                return ValidationResult.failure(country_code, vat_number, BE_FORMAT_MESSAGE)
            if not validate_be_checksum(vat_number):
                logger.info("Rejected Belgian VAT %s: bad checksum", mask_vat(vat_number))
                return ValidationResult.failure(country_code, vat_number, BE_CHECKSUM_MESSAGE)
            logger.debug("Belgian VAT %s passed local checks", mask_vat(vat_number))

        try:
            return await self._client.check_vat(country_code, vat_number)
        except ServiceUnavailableError as exc:
            logger.warning("VIES unavailable for %s%s: %s", country_code, mask_vat(vat_number), exc)
            return ValidationResult.failure(country_code, vat_number, UNAVAILABLE_MESSAGE)
        except Exception as exc:
            logger.warning("VIES validation failed for %s%s: %s", country_code, mask_vat(vat_number), exc)
            return ValidationResult.failure(
                country_code,
                vat_number,
                f"Error validating VAT number: {exc}",
            )

    async def validate_belgian(self, vat_number: str) -> ValidationResult:
        """Shortcut for ``validate`` with country code BE."""
        return await self.validate(ValidationRequest(country_code=BELGIUM, vat_number=vat_number))

    async def check_status(self) -> ServiceStatus:
        """Report VIES availability. Never raises."""
        try:
            available = await self._client.is_service_available()
        except Exception:
            logger.exception("VIES availability check raised")
            available = False

        if not available:
            return ServiceStatus(is_available=False)

        return ServiceStatus(
            is_available=True,
            country_availability={country: True for country in EU_MEMBER_STATES},
        )


# Module-level singleton
vat_service = VatValidationService(vies_client)
