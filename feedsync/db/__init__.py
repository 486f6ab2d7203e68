"""
Database module.
"""

from .models import (
    EventStatus,
    RunKind,
    RunLog,
    RunStatus,
    TriggerType,
    WebhookEvent,
    generate_uuid,
)
from .sqlite import SQLiteDatabase

__all__ = [
    "EventStatus",
    "RunKind",
    "RunLog",
    "RunStatus",
    "TriggerType",
    "WebhookEvent",
    "generate_uuid",
    "SQLiteDatabase",
]
