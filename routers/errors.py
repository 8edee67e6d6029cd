"""Map ledger and collaborator failures to HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from services.content_generator import ContentGeneratorUnavailableError
from services.generation import PaidGenerationFailedError
from services.ledger.types import (
    AccountExistsError,
    AccountNotFoundError,
    InsufficientCreditsError,
    InvalidAmountError,
    VerificationFailedError,
)
from services.payments import PaymentGatewayError, PaymentVerifierUnavailableError

logger = logging.getLogger(__name__)


async def _insufficient_credits(request: Request, exc: InsufficientCreditsError) -> JSONResponse:
    return JSONResponse(
        status_code=402,
        content={
            "detail": {
                "error": "INSUFFICIENT_CREDITS",
                "message": "Insufficient credits. Top up credits to continue.",
                "required": exc.required,
                "current": exc.current,
            }
        },
    )


async def _verification_failed(request: Request, exc: VerificationFailedError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "error": "VERIFICATION_FAILED",
                "message": str(exc),
                "reference": exc.reference,
                "reason": exc.reason,
            }
        },
    )


async def _account_not_found(request: Request, exc: AccountNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Account not found."})


async def _account_exists(request: Request, exc: AccountExistsError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def _invalid_amount(request: Request, exc: InvalidAmountError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


async def _collaborator_unavailable(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


async def _payment_gateway_error(request: Request, exc: PaymentGatewayError) -> JSONResponse:
    logger.warning("Payment gateway failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Payment gateway unavailable. Try again later."})


async def _paid_generation_failed(request: Request, exc: PaidGenerationFailedError) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content={
            "detail": {
                "error": "GENERATION_FAILED",
                "message": str(exc),
                "credits": {"charged": exc.charged, "refunded": exc.refunded, "balance": exc.balance},
            }
        },
    )


async def _storage_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable."})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InsufficientCreditsError, _insufficient_credits)
    app.add_exception_handler(VerificationFailedError, _verification_failed)
    app.add_exception_handler(AccountNotFoundError, _account_not_found)
    app.add_exception_handler(AccountExistsError, _account_exists)
    app.add_exception_handler(InvalidAmountError, _invalid_amount)
    app.add_exception_handler(PaymentVerifierUnavailableError, _collaborator_unavailable)
    app.add_exception_handler(ContentGeneratorUnavailableError, _collaborator_unavailable)
    app.add_exception_handler(PaymentGatewayError, _payment_gateway_error)
    app.add_exception_handler(PaidGenerationFailedError, _paid_generation_failed)
    app.add_exception_handler(SQLAlchemyError, _storage_error)
