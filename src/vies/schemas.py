"""Pydantic schemas for VAT validation requests, results and service status.

Field names are snake_case in Python and camelCase on the wire
(``isValid``, ``countryCode``...), matching the public API contract.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidationRequest(_ApiModel):
    """Input for a VAT validation, raw as typed by the caller."""

    country_code: str
    vat_number: str


class ValidationResult(_ApiModel):
    """Outcome of one validation call. Immutable once built."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    is_valid: bool
    country_code: str
    vat_number: str  # cleaned
    name: str | None = None
    address: str | None = None
    request_date: date | None = None
    error_message: str | None = None

    @model_validator(mode="after")
    def _valid_has_no_error(self) -> ValidationResult:
        if self.is_valid and self.error_message is not None:
            msg = "A valid result cannot carry an error message"
            raise ValueError(msg)
        return self

    @classmethod
    def failure(cls, country_code: str, vat_number: str, error_message: str) -> ValidationResult:
        """Build an ``is_valid=False`` result carrying *error_message*."""
        return cls(
            is_valid=False,
            country_code=country_code,
            vat_number=vat_number,
            error_message=error_message,
        )


class ServiceStatus(_ApiModel):
    """VIES availability snapshot."""

    is_available: bool
    country_availability: dict[str, bool] = Field(default_factory=dict)
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _countries_only_when_available(self) -> ServiceStatus:
        if not self.is_available and self.country_availability:
            msg = "country_availability must be empty when the service is unavailable"
            raise ValueError(msg)
        return self
