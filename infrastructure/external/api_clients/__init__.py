"""
Base client for outbound REST integrations.
"""
from .base import APIResponse, BaseAPIClient, TransientAPIError

__all__ = [
    "APIResponse",
    "BaseAPIClient",
    "TransientAPIError",
]
