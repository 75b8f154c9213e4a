"""
HTTP Handlers Package for JPEL Runner

Provides the outbound HTTP client used by RestAPI activities.
"""

from .http_handlers import HTTPHandlers

__all__ = ["HTTPHandlers"]
