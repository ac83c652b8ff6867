"""API middleware package."""

from src.mombot.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
