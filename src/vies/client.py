"""Async httpx client for the EU VIES checkVat SOAP service."""

from __future__ import annotations

import asyncio
import logging
import re

import httpx

from src.config import settings
from src.vies.exceptions import (
    InvalidArgumentError,
    ServiceUnavailableError,
    VatValidationError,
    ViesError,
)
from src.vies.schemas import ValidationResult
from src.vies.soap import (
    SOAP_HEADERS,
    build_check_vat_envelope,
    classify_fault,
    extract_fault_string,
    is_fault,
    is_unavailability_fault,
    parse_check_vat_response,
)
from src.vies.transport import CircuitBreaker, ResilientTransport

logger = logging.getLogger(__name__)

# WSDL input patterns for checkVat
_COUNTRY_CODE_PATTERN = re.compile(r"^[A-Z]{2}$")
_VAT_NUMBER_PATTERN = re.compile(r"^[0-9A-Za-z+*.]{2,12}$")
_FORMATTING_CHARS = re.compile(r"[\s\-.]")

# Known registered Belgian company, always answered by a healthy VIES
_PROBE_COUNTRY_CODE = "BE"
_PROBE_VAT_NUMBER = "0477472701"


def mask_vat(vat_number: str) -> str:
    """Keep the first 4 characters for log correlation, mask the rest."""
    return vat_number[:4] + "X" * max(len(vat_number) - 4, 0)


class ViesClient:
    """Thin async wrapper around the VIES checkVat endpoint.

    Endpoint: POST {vies_service_url}, SOAP 1.1, empty SOAPAction.
    Every call runs under a deadline: ``vies_request_timeout`` for checkVat,
    ``vies_probe_timeout`` for the availability probe. The underlying
    ``httpx.AsyncClient`` is pooled and safe to share between tasks.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        cfg = settings.vies
        self._service_url = cfg.vies_service_url
        self._request_timeout = cfg.vies_request_timeout
        self._probe_timeout = cfg.vies_probe_timeout
        self._client = http_client or httpx.AsyncClient(
            transport=ResilientTransport(
                httpx.AsyncHTTPTransport(),
                retry_count=cfg.vies_retry_count,
                backoff_base=cfg.vies_retry_backoff_base,
                breaker=CircuitBreaker(
                    failure_threshold=cfg.vies_breaker_failure_threshold,
                    break_duration=cfg.vies_breaker_duration,
                ),
            ),
            timeout=httpx.Timeout(cfg.vies_request_timeout, connect=cfg.vies_connect_timeout),
            headers={"User-Agent": cfg.vies_user_agent},
        )

    async def check_vat(self, country_code: str, vat_number: str) -> ValidationResult:
        """Validate one VAT number against VIES.

        Raises:
            InvalidArgumentError: malformed country code or VAT number.
            ServiceUnavailableError: VIES unreachable, overloaded or non-2xx.
            VatValidationError: VIES rejected the input or failed unexpectedly.
        """
        country_code, vat_number = self._clean_input(country_code, vat_number)
        masked = mask_vat(vat_number)

        try:
            result = await asyncio.wait_for(
                self._check_vat(country_code, vat_number),
                timeout=self._request_timeout,
            )
        except (InvalidArgumentError, ViesError):
            raise
        except asyncio.TimeoutError as exc:
            logger.warning("VIES timeout after %.0fs for %s%s", self._request_timeout, country_code, masked)
            msg = f"Unable to connect to VIES service: no response within {self._request_timeout:.0f}s"
            raise ServiceUnavailableError(msg) from exc
        except httpx.RequestError as exc:
            logger.warning("VIES network error for %s%s: %s", country_code, masked, exc)
            msg = f"Unable to connect to VIES service: {exc}"
            raise ServiceUnavailableError(msg) from exc
        except Exception as exc:
            logger.exception("Unexpected error validating %s%s", country_code, masked)
            msg = f"Error validating VAT number: {exc}"
            raise VatValidationError(msg, country_code, vat_number) from exc

        logger.info("VIES checkVat %s%s -> valid=%s", country_code, masked, result.is_valid)
        return result

    async def is_service_available(self) -> bool:
        """Probe VIES with a known-good number. Never raises."""
        try:
            return await asyncio.wait_for(self._probe(), timeout=self._probe_timeout)
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            logger.warning("VIES availability probe failed: %s", type(exc).__name__)
            return False
        except Exception:
            logger.exception("Unexpected error during VIES availability probe")
            return False

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    # ── Internals ────────────────────────────────────────────────────

    @staticmethod
    def _clean_input(country_code: str, vat_number: str) -> tuple[str, str]:
        if not _COUNTRY_CODE_PATTERN.match(country_code or ""):
            msg = "Country code must be exactly 2 uppercase letters"
            raise InvalidArgumentError(msg)

        cleaned = _FORMATTING_CHARS.sub("", (vat_number or "").strip().upper())
        if cleaned.startswith(country_code):
            cleaned = cleaned[len(country_code):]

        if not _VAT_NUMBER_PATTERN.match(cleaned):
            msg = "VAT number must be 2-12 characters containing only alphanumeric characters, +, *, or ."
            raise InvalidArgumentError(msg)
        return country_code, cleaned

    async def _post_envelope(self, country_code: str, vat_number: str, timeout: float) -> httpx.Response:
        return await self._client.post(
            self._service_url,
            content=build_check_vat_envelope(country_code, vat_number),
            headers=SOAP_HEADERS,
            timeout=timeout,
        )

    async def _check_vat(self, country_code: str, vat_number: str) -> ValidationResult:
        response = await self._post_envelope(country_code, vat_number, self._request_timeout)

        # VIES reports faults with HTTP 500, so look at the body first
        if is_fault(response.text):
            fault_string = extract_fault_string(response.content)
            if fault_string is not None:
                logger.warning("VIES fault for %s%s: %s", country_code, mask_vat(vat_number), fault_string)
                raise classify_fault(fault_string)

        if not response.is_success:
            msg = (
                "Unable to connect to VIES service: "
                f"response status code {response.status_code} does not indicate success"
            )
            raise ServiceUnavailableError(msg)

        return parse_check_vat_response(response.content, country_code, vat_number)

    async def _probe(self) -> bool:
        response = await self._post_envelope(_PROBE_COUNTRY_CODE, _PROBE_VAT_NUMBER, self._probe_timeout)
        if not response.is_success:
            logger.warning("VIES availability probe got HTTP %d", response.status_code)
            return False

        body = response.text
        if is_fault(body) and is_unavailability_fault(body):
            logger.warning("VIES availability probe got an unavailability fault")
            return False

        # Any other answer, even an invalid VAT fault, means VIES is up
        return True


# Module-level singleton
vies_client = ViesClient()
