"""API middleware package."""

from src.meetscribe.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
