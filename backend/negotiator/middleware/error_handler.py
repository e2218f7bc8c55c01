"""
Global error handling middleware.

WHAT: Translate exceptions to appropriate HTTP responses
WHY: Consistent error responses with proper status codes
HOW: FastAPI exception handlers for business, provider and browser exceptions
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from datetime import datetime

from ..browser.action_surface import BrowserActionError
from ..llm.types import (
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderDisabledError,
    ProviderResponseError,
)
from ..utils.exceptions import (
    BusinessException,
    ValidationException,
    SessionNotFoundException,
    SavedSessionNotFoundException,
    NegotiationAlreadyActiveException,
    InvalidPhaseException,
    ApprovalNotPendingException,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _error_response(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": code,
            "message": message,
            "details": details,
            "timestamp": datetime.now().isoformat()
        }
    )


async def provider_disabled_handler(request: Request, exc: ProviderDisabledError):
    """
    Handle ProviderDisabledError.

    WHAT: Provider is disabled in config
    WHY: User needs to enable provider or switch to another
    HOW: Return 400 with clear error code
    """
    logger.warning(f"Provider disabled: {exc}")
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        "LLM_PROVIDER_DISABLED",
        str(exc),
        "Check LLM provider configuration"
    )


async def provider_timeout_handler(request: Request, exc: ProviderTimeoutError):
    logger.error(f"Provider timeout: {exc}")
    return _error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "LLM_TIMEOUT",
        str(exc),
        "LLM provider request timed out"
    )


async def provider_unavailable_handler(request: Request, exc: ProviderUnavailableError):
    """
    Handle ProviderUnavailableError.

    WHAT: Provider is not reachable
    WHY: Service may be down or misconfigured
    HOW: Return 503 service unavailable
    """
    logger.error(f"Provider unavailable: {exc}")
    return _error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "LLM_UNAVAILABLE",
        str(exc),
        "LLM provider is not reachable. Check that LM Studio is running."
    )


async def provider_response_error_handler(request: Request, exc: ProviderResponseError):
    logger.error(f"Provider response error: {exc}")
    return _error_response(
        status.HTTP_502_BAD_GATEWAY,
        "LLM_BAD_GATEWAY",
        str(exc),
        "LLM provider returned an invalid response"
    )


async def browser_error_handler(request: Request, exc: BrowserActionError):
    """
    Handle BrowserActionError.

    WHAT: The browser could not be launched, attached to or driven
    WHY: Usually a missing Playwright install or a CDP endpoint that is not listening
    HOW: Return 502 bad gateway
    """
    logger.error(f"Browser error: {exc}")
    return _error_response(
        status.HTTP_502_BAD_GATEWAY,
        "BROWSER_ERROR",
        str(exc),
        "Check the browser configuration (mode, CDP endpoint, Playwright install)"
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Handle FastAPI RequestValidationError.

    WHAT: Request validation failed
    WHY: Invalid request payload
    HOW: Return 400 with field errors
    """
    logger.warning(f"Validation error: {exc.errors()}")

    # ctx may hold exception instances, which are not JSON serializable
    cleaned_errors = []
    for error in exc.errors():
        cleaned_error = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "input": error.get("input")
        }
        if "ctx" in error:
            cleaned_error["ctx"] = {
                k: str(v) if isinstance(v, Exception) else v
                for k, v in error["ctx"].items()
            }
        cleaned_errors.append(cleaned_error)

    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Request validation failed",
        cleaned_errors
    )


async def business_exception_handler(request: Request, exc: BusinessException):
    """
    Handle BusinessException.

    WHAT: Domain-specific error
    WHY: Unknown sessions are 404, state conflicts are 409
    HOW: Return appropriate status code based on exception type
    """
    status_code = status.HTTP_400_BAD_REQUEST

    if isinstance(exc, (SessionNotFoundException, SavedSessionNotFoundException)):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (NegotiationAlreadyActiveException, InvalidPhaseException, ApprovalNotPendingException)):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, ValidationException):
        status_code = status.HTTP_400_BAD_REQUEST

    logger.warning(f"Business exception: {exc.code} - {exc.message}")
    return _error_response(status_code, exc.code, exc.message, exc.details)


def register_exception_handlers(app):
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    # LLM Provider exceptions
    app.add_exception_handler(ProviderDisabledError, provider_disabled_handler)
    app.add_exception_handler(ProviderTimeoutError, provider_timeout_handler)
    app.add_exception_handler(ProviderUnavailableError, provider_unavailable_handler)
    app.add_exception_handler(ProviderResponseError, provider_response_error_handler)

    app.add_exception_handler(BrowserActionError, browser_error_handler)

    # API exceptions
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(BusinessException, business_exception_handler)

    logger.info("Exception handlers registered")
