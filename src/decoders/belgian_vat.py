"""Belgian VAT / enterprise number checks.

Pure Python — no I/O. Cleans raw VAT input and validates the Belgian
enterprise number locally, before VIES is ever contacted.

BE format: BE 0123.456.789
  - leading 0 (may be omitted by the caller)
  - 7 digits:  base number
  - 2 digits:  check digits = 97 - (base mod 97)
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BELGIUM = "BE"

_NON_DIGIT = re.compile(r"[^0-9]")
# Characters VIES accepts in a vatNumber: [0-9A-Za-z+*.]
_NON_VIES_CHAR = re.compile(r"[^0-9A-Za-z+*.]")

_BE_SIGNIFICANT_DIGITS = 9
_BE_MODULUS = 97


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def clean_vat_number(vat_number: str, country_code: str) -> str:
    """Normalize a raw VAT number for *country_code* (already uppercased).

    Trims and uppercases, drops a leading country prefix, then keeps only
    digits for Belgium or the VIES alphabet for every other country.
    """
    cleaned = vat_number.strip().upper()
    if country_code and cleaned.startswith(country_code):
        cleaned = cleaned[len(country_code):]

    if country_code == BELGIUM:
        return _NON_DIGIT.sub("", cleaned)
    return _NON_VIES_CHAR.sub("", cleaned)


def validate_be_format(vat_number: str) -> bool:
    """Check that the number has exactly 9 significant digits."""
    significant = vat_number.lstrip("0")
    return len(significant) == _BE_SIGNIFICANT_DIGITS and significant.isdigit() and significant.isascii()


def validate_be_checksum(vat_number: str) -> bool:
    """Validate the modulo-97 check digits of a Belgian enterprise number."""
    significant = vat_number.lstrip("0")
    if not validate_be_format(significant):
        return False

    base = int(significant[:7])
    check = int(significant[7:])
    return _BE_MODULUS - (base % _BE_MODULUS) == check


def format_belgian_vat(vat_number: str) -> str:
    """Render a cleaned Belgian number as ``BE 0123.456.789``.

    Returns the input unchanged if it is not a well-formed Belgian number.
    """
    if not validate_be_format(vat_number):
        return vat_number
    digits = vat_number.lstrip("0").zfill(10)
    return f"{BELGIUM} {digits[:4]}.{digits[4:7]}.{digits[7:]}"
