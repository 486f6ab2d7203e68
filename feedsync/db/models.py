"""
Pydantic models for database rows.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


class RunKind(str, Enum):
    """Which pipeline a run log belongs to."""
    RECONCILE = "reconcile"
    DELTA = "delta"


class RunStatus(str, Enum):
    """Status of a run log entry."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class TriggerType(str, Enum):
    """What triggered the run."""
    SCHEDULER = "scheduler"
    MANUAL = "manual"
    WEBHOOK = "webhook"


class EventStatus(str, Enum):
    """Processing state of a journaled push event."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RunLog(BaseModel):
    """A log entry for one reconcile or delta-sync run."""
    id: str = Field(default_factory=generate_uuid)
    kind: RunKind = RunKind.RECONCILE
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    status: RunStatus = RunStatus.RUNNING
    triggered_by: TriggerType = TriggerType.MANUAL
    dry_run: bool = False

    # Statistics
    products_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_skipped: int = 0
    items_errored: int = 0

    # Error information
    error_message: Optional[str] = None
    error_details: Optional[str] = None


class WebhookEvent(BaseModel):
    """A push notification accepted by the ingress."""
    id: str = Field(default_factory=generate_uuid)
    dedupe_key: str
    event_type: str
    sku: str
    payload: str  # raw body
    status: EventStatus = EventStatus.PENDING
    attempts: int = 0
    received_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None
