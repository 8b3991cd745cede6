"""HTTP middleware and exception handlers."""

from .correlation_middleware import CORRELATION_HEADER, CorrelationMiddleware
from .error_handling import register_error_handlers

__all__ = ["CORRELATION_HEADER", "CorrelationMiddleware", "register_error_handlers"]
