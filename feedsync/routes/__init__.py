"""
Routes package.
"""

from .sync import router as sync_router
from .webhooks import router as webhooks_router

__all__ = [
    "sync_router",
    "webhooks_router",
]
