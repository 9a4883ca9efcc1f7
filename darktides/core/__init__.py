"""Cross-cutting pieces of the storefront: JSON logging with request context,
and the health/readiness router."""

from .health import ServiceHealth, HealthStatus
from .logging_config import (
    StructuredFormatter,
    SecurityFilter,
    LoggerAdapter,
    RequestLoggingMiddleware,
    setup_logging,
    get_logger,
    set_request_context,
    generate_request_id,
)

__all__ = [
    "ServiceHealth",
    "HealthStatus",
    "StructuredFormatter",
    "SecurityFilter",
    "LoggerAdapter",
    "RequestLoggingMiddleware",
    "setup_logging",
    "get_logger",
    "set_request_context",
    "generate_request_id",
]
