"""SQLite persistence for automation definitions and their run status."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

from stepflow.automation.errors import AutomationNotFound
from stepflow.automation.models import (
    Automation,
    AutomationCreate,
    AutomationJob,
    AutomationUpdate,
    ExecutionStatus,
    Step,
)

logger = logging.getLogger(__name__)

_STEPS_ADAPTER = TypeAdapter(list[Step])


def _parse_datetime(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class AutomationStore:
    """Automation CRUD plus the status/last-run writes made by the runner."""

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS automations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            url TEXT NOT NULL,
            schedule TEXT,
            steps TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'stopped',
            last_run TEXT,
            created_at TEXT
        );
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(self.SCHEMA)
        self._recover_interrupted_runs()

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _recover_interrupted_runs(self) -> None:
        # A run cannot survive a restart, so a leftover 'running' means it died mid-way
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE automations SET status = ? WHERE status = ?",
                (ExecutionStatus.ERROR.value, ExecutionStatus.RUNNING.value),
            )
        if cursor.rowcount:
            logger.warning("Marked %d interrupted run(s) as error", cursor.rowcount)

    @staticmethod
    def _row_to_automation(row: sqlite3.Row) -> Automation:
        return Automation(
            id=row["id"],
            name=row["name"],
            url=row["url"],
            schedule=row["schedule"],
            steps=_STEPS_ADAPTER.validate_python(json.loads(row["steps"])),
            status=ExecutionStatus(row["status"]),
            last_run=_parse_datetime(row["last_run"]),
            created_at=_parse_datetime(row["created_at"]),
        )

    @staticmethod
    def _dump_steps(steps: list[Any]) -> str:
        return json.dumps([step.model_dump(exclude_none=True) for step in steps])

    def list_automations(self) -> list[Automation]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM automations ORDER BY id").fetchall()
        return [self._row_to_automation(row) for row in rows]

    def get_automation(self, automation_id: int) -> Automation | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM automations WHERE id = ?", (automation_id,)
            ).fetchone()
        return self._row_to_automation(row) if row else None

    def create_automation(self, data: AutomationCreate) -> Automation:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO automations (name, url, schedule, steps, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    data.name,
                    data.url,
                    data.schedule,
                    self._dump_steps(data.steps),
                    ExecutionStatus.STOPPED.value,
                    datetime.now().isoformat(),
                ),
            )
            automation_id = cursor.lastrowid
        return self.get_automation(automation_id)

    def update_automation(self, automation_id: int, data: AutomationUpdate) -> Automation:
        updates = data.model_dump(exclude_unset=True)
        if "steps" in updates:
            updates["steps"] = self._dump_steps(data.steps or [])
        if updates:
            columns = ", ".join(f"{column} = ?" for column in updates)
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE automations SET {columns} WHERE id = ?",
                    (*updates.values(), automation_id),
                )
            if cursor.rowcount == 0:
                raise AutomationNotFound(automation_id)
        automation = self.get_automation(automation_id)
        if automation is None:
            raise AutomationNotFound(automation_id)
        return automation

    def delete_automation(self, automation_id: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM automations WHERE id = ?", (automation_id,))
        return cursor.rowcount > 0

    # Runner-facing contract

    def get_job(self, automation_id: int) -> AutomationJob:
        automation = self.get_automation(automation_id)
        if automation is None:
            raise AutomationNotFound(automation_id)
        return automation.to_job()

    def set_status(self, automation_id: int, status: ExecutionStatus) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE automations SET status = ? WHERE id = ?",
                (ExecutionStatus(status).value, automation_id),
            )

    def set_last_run(self, automation_id: int, timestamp: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE automations SET last_run = ? WHERE id = ?",
                (timestamp.isoformat(), automation_id),
            )
