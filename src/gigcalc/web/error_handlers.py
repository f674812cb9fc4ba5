import logging

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from pymongo.errors import ConnectionFailure, ExecutionTimeout, WTimeoutError

from gigcalc.errors import AuthenticationError, InvalidCredentialError, NotFoundError, TransientError, ValidationError

logger = logging.getLogger(__name__)

# Failures that are safe to retry: provider trouble and MongoDB timeouts or lost connections
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (TransientError, ConnectionFailure, ExecutionTimeout, WTimeoutError)


def create_json_error_response(status_code: int, message: str, error_type: str | None = None) -> JSONResponse:
    """Create JSON error response with optional type for machine parsing."""
    content = {"message": message}
    if error_type:
        content["type"] = error_type
    return JSONResponse(status_code=status_code, content=content)


async def user_error_handler(_: Request, exc: Exception) -> Response:
    """Handle all UserError subclasses with appropriate status codes."""
    if isinstance(exc, AuthenticationError):
        # Missing, revoked and expired sessions look the same to the client
        return create_json_error_response(401, "Not authenticated", "authentication_error")
    if isinstance(exc, InvalidCredentialError):
        # Provider detail stays in the server log
        logger.info("Sign-in rejected (%s): %s", type(exc).__name__, exc.detail)
        return create_json_error_response(401, str(exc), "invalid_credential")

    if isinstance(exc, NotFoundError):
        status_code = 404
        error_type = "not_found"
    elif isinstance(exc, ValidationError):
        status_code = 400
        error_type = "validation_error"
    else:
        # Default for any other UserError subclass
        status_code = 400
        error_type = "bad_request"

    return create_json_error_response(status_code=status_code, message=str(exc), error_type=error_type)


async def transient_error_handler(_: Request, exc: Exception) -> Response:
    """Handle provider and database timeouts or connection failures (503, safe to retry)."""
    logger.warning("Transient failure: %s: %s", type(exc).__name__, exc)
    response = create_json_error_response(
        status_code=503, message="Service temporarily unavailable, please retry.", error_type="service_unavailable"
    )
    response.headers["Retry-After"] = "1"
    return response


async def general_exception_handler(_: Request, exc: Exception) -> Response:
    """Handle unexpected errors (500)."""
    logger.exception("Unexpected error: %s", exc)
    return create_json_error_response(
        status_code=500, message="An unexpected error occurred.", error_type="internal_server_error"
    )
