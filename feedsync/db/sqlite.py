"""
SQLite storage for run logs and the push event journal.
"""

import aiosqlite
from datetime import datetime
from typing import Any, List, Optional
import os

from .models import (
    EventStatus, RunKind, RunLog, RunStatus, TriggerType, WebhookEvent, utcnow
)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (RunStatus, EventStatus, TriggerType, RunKind)):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


class SQLiteDatabase:
    """SQLite database for run logs and webhook events."""

    LOG_FIELDS = {
        "finished_at", "status", "products_processed", "items_created",
        "items_updated", "items_skipped", "items_errored",
        "error_message", "error_details",
    }

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            if self.db_path != ":memory:":
                os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row
        return self._connection

    async def initialize(self) -> None:
        """Create database tables."""
        conn = await self._get_connection()

        await conn.executescript("""
            CREATE TABLE IF NOT EXISTS run_logs (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                started_at TEXT NOT NULL,
                finished_at TEXT,
                status TEXT NOT NULL DEFAULT 'running',
                triggered_by TEXT NOT NULL,
                dry_run INTEGER NOT NULL DEFAULT 0,
                products_processed INTEGER NOT NULL DEFAULT 0,
                items_created INTEGER NOT NULL DEFAULT 0,
                items_updated INTEGER NOT NULL DEFAULT 0,
                items_skipped INTEGER NOT NULL DEFAULT 0,
                items_errored INTEGER NOT NULL DEFAULT 0,
                error_message TEXT,
                error_details TEXT
            );

            CREATE TABLE IF NOT EXISTS webhook_events (
                id TEXT PRIMARY KEY,
                dedupe_key TEXT NOT NULL UNIQUE,
                event_type TEXT NOT NULL,
                sku TEXT NOT NULL,
                payload TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                attempts INTEGER NOT NULL DEFAULT 0,
                received_at TEXT NOT NULL,
                processed_at TEXT,
                error_message TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_run_logs_started_at ON run_logs(started_at DESC);
            CREATE INDEX IF NOT EXISTS idx_webhook_events_status ON webhook_events(status, received_at);
        """)
        await conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # ===== Helper Methods =====

    def _row_to_log(self, row: aiosqlite.Row) -> RunLog:
        return RunLog(
            id=row["id"],
            kind=RunKind(row["kind"]),
            started_at=_parse_dt(row["started_at"]),
            finished_at=_parse_dt(row["finished_at"]),
            status=RunStatus(row["status"]),
            triggered_by=TriggerType(row["triggered_by"]),
            dry_run=bool(row["dry_run"]),
            products_processed=row["products_processed"],
            items_created=row["items_created"],
            items_updated=row["items_updated"],
            items_skipped=row["items_skipped"],
            items_errored=row["items_errored"],
            error_message=row["error_message"],
            error_details=row["error_details"],
        )

    def _row_to_event(self, row: aiosqlite.Row) -> WebhookEvent:
        return WebhookEvent(
            id=row["id"],
            dedupe_key=row["dedupe_key"],
            event_type=row["event_type"],
            sku=row["sku"],
            payload=row["payload"],
            status=EventStatus(row["status"]),
            attempts=row["attempts"],
            received_at=_parse_dt(row["received_at"]),
            processed_at=_parse_dt(row["processed_at"]),
            error_message=row["error_message"],
        )

    # ===== Run Log Operations =====

    async def create_log(
        self,
        kind: RunKind,
        triggered_by: TriggerType,
        dry_run: bool = False,
    ) -> RunLog:
        log = RunLog(kind=kind, triggered_by=triggered_by, dry_run=dry_run)

        conn = await self._get_connection()
        await conn.execute(
            """
            INSERT INTO run_logs (id, kind, started_at, status, triggered_by, dry_run)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                log.id, log.kind.value, log.started_at.isoformat(),
                log.status.value, log.triggered_by.value, int(log.dry_run),
            )
        )
        await conn.commit()
        return log

    async def update_log(self, log_id: str, **kwargs) -> Optional[RunLog]:
        updates = []
        values = []

        for key, value in kwargs.items():
            if key not in self.LOG_FIELDS:
                raise ValueError(f"Unknown run log field: {key}")
            updates.append(f"{key} = ?")
            values.append(_to_db(value))

        if not updates:
            return await self.get_log(log_id)

        values.append(log_id)

        conn = await self._get_connection()
        await conn.execute(f"UPDATE run_logs SET {', '.join(updates)} WHERE id = ?", values)
        await conn.commit()

        return await self.get_log(log_id)

    async def get_log(self, log_id: str) -> Optional[RunLog]:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM run_logs WHERE id = ?", (log_id,))
        row = await cursor.fetchone()
        return self._row_to_log(row) if row else None

    async def get_logs(
        self,
        kind: Optional[RunKind] = None,
        status: Optional[RunStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[RunLog]:
        conn = await self._get_connection()

        query = "SELECT * FROM run_logs WHERE 1=1"
        params: List[Any] = []

        if kind:
            query += " AND kind = ?"
            params.append(kind.value)

        if status:
            query += " AND status = ?"
            params.append(status.value)

        query += " ORDER BY started_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_log(row) for row in rows]

    # ===== Webhook Event Operations =====

    async def record_event(self, event: WebhookEvent) -> bool:
        """
        Journal a push event.

        Returns:
            False if an event with the same dedupe key already exists
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            INSERT OR IGNORE INTO webhook_events
                (id, dedupe_key, event_type, sku, payload, status, attempts, received_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id, event.dedupe_key, event.event_type, event.sku,
                event.payload, event.status.value, event.attempts,
                event.received_at.isoformat(),
            )
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def get_event(self, event_id: str) -> Optional[WebhookEvent]:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM webhook_events WHERE id = ?", (event_id,))
        row = await cursor.fetchone()
        return self._row_to_event(row) if row else None

    async def mark_event(
        self,
        event_id: str,
        status: EventStatus,
        error_message: Optional[str] = None,
    ) -> None:
        conn = await self._get_connection()
        if status == EventStatus.PROCESSING:
            await conn.execute(
                "UPDATE webhook_events SET status = ?, attempts = attempts + 1 WHERE id = ?",
                (status.value, event_id)
            )
        else:
            await conn.execute(
                """
                UPDATE webhook_events SET status = ?, processed_at = ?, error_message = ?
                WHERE id = ?
                """,
                (status.value, utcnow().isoformat(), error_message, event_id)
            )
        await conn.commit()

    async def get_pending_events(
        self, limit: int = 50, max_attempts: int = 3
    ) -> List[WebhookEvent]:
        """Pending or failed events that still have attempts left, oldest first."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM webhook_events
            WHERE status IN (?, ?) AND attempts < ?
            ORDER BY received_at ASC LIMIT ?
            """,
            (EventStatus.PENDING.value, EventStatus.FAILED.value, max_attempts, limit)
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]
