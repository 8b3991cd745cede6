"""
Exception handlers for the HTTP surface.

Every error leaves the server in the GraphQL response shape,
{"data": null, "errors": [{"errorType": ..., "message": ...}]}, so clients
parse simulator failures the same way they parse execution errors.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..error_types import ErrorMessages, ErrorType, create_error_entry
from ..exceptions import SimulatorError
from ..structured_logging.enhanced_logging_config import get_logger, log_exception_once

logger = get_logger(__name__)

_STATUS_BY_ERROR_TYPE = {
    ErrorType.UNAUTHORIZED: 401,
    ErrorType.BAD_REQUEST: 400,
    ErrorType.VALIDATION_ERROR: 400,
    ErrorType.EXECUTION_ERROR: 200,
}


def error_response(status_code: int, errors: list[dict], headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"data": None, "errors": errors}, headers=headers)


def status_for(error: SimulatorError) -> int:
    return _STATUS_BY_ERROR_TYPE.get(error.error_type, 500)


def register_error_handlers(app: FastAPI) -> None:
    """
    Register exception handlers for the simulator's FastAPI application.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(SimulatorError)
    async def simulator_error_handler(request: Request, exc: SimulatorError) -> JSONResponse:
        """Handle SimulatorError exceptions (already logged on construction)."""
        return error_response(status_for(exc), [exc.to_error_entry()])

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Request validation failed", path=request.url.path, errors=len(exc.errors()))
        return error_response(400, [create_error_entry(ErrorType.BAD_REQUEST, ErrorMessages.INVALID_BODY)])

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        error_type = ErrorType.UNAUTHORIZED if exc.status_code == 401 else ErrorType.BAD_REQUEST
        return error_response(
            exc.status_code,
            [create_error_entry(error_type, str(exc.detail))],
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log_exception_once(
            logger,
            "error",
            "Unhandled error serving request",
            exc=exc,
            path=request.url.path,
            exc_info=True,
        )
        return error_response(500, [create_error_entry(ErrorType.INTERNAL_ERROR, ErrorMessages.INTERNAL_ERROR)])

    logger.debug("Error handlers registered for simulator application")
