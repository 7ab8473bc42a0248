"""VAT API — FastAPI router exposing validation and VIES status.

Endpoints:
    POST /api/vat/validate                       generic VAT number
    GET  /api/vat/validate/belgium/{vat_number}  Belgian shortcut
    GET  /api/vat/status                         VIES availability

Upstream failures already arrive as ``isValid=false`` results; only caller
errors (400) and unexpected validation errors (500) are mapped here.
"""
# ruff: noqa: B008  — Depends() in function defaults is standard FastAPI

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from src.vies.exceptions import InvalidArgumentError, VatValidationError
from src.vies.schemas import ServiceStatus, ValidationRequest, ValidationResult
from src.vies.service import VatValidationService, vat_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vat", tags=["vat"])


def get_vat_service() -> VatValidationService:
    """Dependency returning the process-wide validation service."""
    return vat_service


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@router.post("/validate", response_model=ValidationResult)
async def validate_vat(
    request: ValidationRequest,
    service: VatValidationService = Depends(get_vat_service),
) -> Any:
    """Validate a VAT number for any EU member state."""
    try:
        return await service.validate(request)
    except InvalidArgumentError as exc:
        logger.warning("Invalid request parameters: %s", exc)
        return _error(400, str(exc))
    except VatValidationError as exc:
        logger.error("VAT validation error: %s", exc)
        return _error(500, str(exc))


@router.get("/validate/belgium/{vat_number}", response_model=ValidationResult)
async def validate_belgian_vat(
    vat_number: str,
    service: VatValidationService = Depends(get_vat_service),
) -> Any:
    """Validate a Belgian VAT number (``BE`` prefix optional)."""
    try:
        return await service.validate_belgian(vat_number)
    except InvalidArgumentError as exc:
        logger.warning("Invalid VAT number format: %s", exc)
        return _error(400, str(exc))
    except VatValidationError as exc:
        logger.error("VAT validation error: %s", exc)
        return _error(500, str(exc))


@router.get("/status", response_model=ServiceStatus)
async def service_status(
    service: VatValidationService = Depends(get_vat_service),
) -> Any:
    """Report whether VIES is currently answering."""
    try:
        return await service.check_status()
    except Exception:
        logger.exception("Error checking service status")
        return _error(500, "Unable to check service status")
