"""Business exceptions shared by the domain and infrastructure layers.

The core layer only maps these to HTTP responses; nothing here depends on it.
"""
from __future__ import annotations

from typing import Optional


class BusinessException(Exception):
    """Base class for every expected, typed failure."""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)
