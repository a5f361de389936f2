from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class UpstreamError(AppError):
    """A partner API (UpPromote, Seal, Shopify) failed or answered with an error."""

    def __init__(
        self,
        message: str = "Upstream service error",
        code: str = "UPSTREAM_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code=code, status_code=status.HTTP_502_BAD_GATEWAY, details=details)


class DiscountError(UpstreamError):
    def __init__(self, message: str = "Discount code error", details: dict[str, Any] | None = None):
        super().__init__(message, code="DISCOUNT_ERROR", details=details)


class CommissionSyncError(UpstreamError):
    """
    A commission adjustment could not be pushed while consuming credit.

    The failing referral has been restored locally. Referrals listed in
    `breakdown` were debited (locally and remotely) before the failure and
    stay debited.
    """

    def __init__(
        self,
        customer_key: str,
        referral_id: str,
        rolled_back: Any,
        used: Any,
        breakdown: list[Any],
        reason: str,
    ):
        self.customer_key = customer_key
        self.referral_id = referral_id
        self.rolled_back = rolled_back
        self.used = used
        self.breakdown = breakdown
        self.reason = reason
        super().__init__(
            f"Commission adjustment failed for referral {referral_id}: {reason}",
            code="COMMISSION_SYNC_FAILED",
            details={
                "customer_key": customer_key,
                "referral_id": referral_id,
                "rolled_back": rolled_back,
                "used": used,
                "breakdown": breakdown,
                "reason": reason,
            },
        )


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": jsonable_encoder(exc.details),
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": jsonable_encoder(exc.errors())},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=422,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
