"""Middleware package for the AutoReminder API."""

from autoreminder.middleware.correlation import (
    CORRELATION_ID_HEADER,
    CorrelationIdMiddleware,
)

__all__ = ["CorrelationIdMiddleware", "CORRELATION_ID_HEADER"]
