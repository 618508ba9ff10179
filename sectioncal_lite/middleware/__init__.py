"""Middleware components for sectioncal_lite."""

from .correlation_id import (
    cors_middleware,
    correlation_id_middleware,
    get_request_id,
    request_id_var,
)

__all__ = ["cors_middleware", "correlation_id_middleware", "get_request_id", "request_id_var"]
