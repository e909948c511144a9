"""Error handling middleware for the xerolink API.

Every XeroLinkError is rendered as
``{"error": {"type", "message", "reauthenticate", "retryable"}}``.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status
from starlette.exceptions import HTTPException as StarletteHTTPException
from structlog import get_logger

from xerolink.exceptions import ErrorType, XeroLinkError


logger = get_logger(__name__)


def _build_error_response(
    status_code: int,
    error_type: str,
    message: str,
    *,
    reauthenticate: bool = False,
    retryable: bool = False,
) -> JSONResponse:
    """Build standardized error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "type": error_type,
                "message": message,
                "reauthenticate": reauthenticate,
                "retryable": retryable,
            }
        },
    )


def setup_error_handlers(app: FastAPI) -> None:
    """Setup error handlers for the FastAPI application."""

    @app.exception_handler(XeroLinkError)
    async def xerolink_error_handler(request: Request, exc: XeroLinkError) -> JSONResponse:
        """Handle all XeroLinkError subclasses using their built-in attributes."""
        error_type = (
            exc.error_type.value if hasattr(exc.error_type, "value") else str(exc.error_type)
        )
        log_kwargs = {
            "error_type": error_type,
            "error_message": str(exc),
            "status_code": exc.status_code,
            "request_method": request.method,
            "request_url": str(request.url.path),
        }
        if exc.status_code >= 500:
            logger.error(type(exc).__name__, **log_kwargs)
        else:
            logger.warning(type(exc).__name__, **log_kwargs)

        return _build_error_response(
            exc.status_code,
            error_type,
            exc.message,
            reauthenticate=exc.reauthenticate,
            retryable=exc.retryable,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.debug("request_validation_failed", errors=exc.errors())
        return _build_error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            ErrorType.INVALID_REQUEST.value,
            "; ".join(str(error.get("msg")) for error in exc.errors()),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle FastAPI/Starlette HTTP exceptions."""
        if exc.status_code == 404:
            logger.debug("http_404", request_url=str(request.url.path))
        else:
            logger.warning(
                "http_exception",
                status_code=exc.status_code,
                error_message=exc.detail,
                request_url=str(request.url.path),
            )
        return _build_error_response(exc.status_code, "http_error", str(exc.detail))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle all other unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            error_message=str(exc),
            request_method=request.method,
            request_url=str(request.url.path),
            exc_info=True,
        )
        return _build_error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            ErrorType.INTERNAL_SERVER.value,
            "An internal server error occurred",
        )
