"""
Shared HTTP plumbing.
"""

from .client import (
    ApiClient,
    ApiClientError,
    NotFoundError,
    PermanentApiError,
    TransientApiError,
)
from .pacing import Pacer

__all__ = [
    "ApiClient",
    "ApiClientError",
    "NotFoundError",
    "PermanentApiError",
    "TransientApiError",
    "Pacer",
]
