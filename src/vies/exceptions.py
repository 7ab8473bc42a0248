"""Error taxonomy for VAT validation.

InvalidArgumentError is a caller error and is never downgraded.
ViesError subclasses are upstream failures; VatValidationService turns them
into an ``is_valid=False`` result.
"""

from __future__ import annotations


class InvalidArgumentError(ValueError):
    """Caller-supplied input is structurally invalid."""


class ViesError(Exception):
    """Base class for failures reported by (or on the way to) VIES."""


class ServiceUnavailableError(ViesError):
    """VIES is transiently unreachable or overloaded."""

    def __init__(self, message: str = "VIES service is currently unavailable") -> None:
        super().__init__(message)


class VatValidationError(ViesError):
    """VIES responded but signalled a logic-level problem."""

    def __init__(
        self,
        message: str,
        country_code: str | None = None,
        vat_number: str | None = None,
    ) -> None:
        super().__init__(message)
        self.country_code = country_code
        self.vat_number = vat_number
