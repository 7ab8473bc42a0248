"""Deterministic VAT number decoders — cleaning, format and checksum checks."""

from src.decoders.belgian_vat import (
    clean_vat_number,
    format_belgian_vat,
    validate_be_checksum,
    validate_be_format,
)

__all__ = [
    "clean_vat_number",
    "format_belgian_vat",
    "validate_be_checksum",
    "validate_be_format",
]
