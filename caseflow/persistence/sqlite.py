"""SQLite implementation of the run repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import ActionRun, StepRecord
from .repository import RunRepository


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteRunRepository(RunRepository):
    """Persist action runs using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS action_runs (
                run_id TEXT PRIMARY KEY,
                action_name TEXT NOT NULL,
                definition TEXT NOT NULL,
                input TEXT,
                status TEXT NOT NULL,
                error TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                service TEXT,
                started_at TEXT,
                completed_at TEXT,
                status TEXT,
                output TEXT,
                error TEXT,
                UNIQUE (run_id, step_id)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _row_to_run(row: sqlite3.Row, steps: list[StepRecord]) -> ActionRun:
        return ActionRun(
            run_id=row["run_id"],
            action_name=row["action_name"],
            definition=json.loads(row["definition"]),
            input=json.loads(row["input"]) if row["input"] else {},
            status=row["status"],
            error=row["error"],
            steps=steps,
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_run(
        self,
        run_id: str,
        action_name: str,
        definition: dict,
        input: dict | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO action_runs (run_id, action_name, definition, input, status) VALUES (?, ?, ?, ?, ?)",
            run_id,
            action_name,
            json.dumps(definition, default=str),
            json.dumps(input or {}, default=str),
            "running",
        )

    async def mark_step_started(self, run_id: str, step_id: str, service: str) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR IGNORE INTO step_history (run_id, step_id, service, started_at, status)
            VALUES (?, ?, ?, ?, ?)
            """,
            run_id,
            step_id,
            service,
            _now(),
            "running",
        )

    async def mark_step_completed(
        self,
        run_id: str,
        step_id: str,
        status: str,
        output: Any = None,
        error: str | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE step_history
            SET completed_at = ?, status = ?, output = ?, error = ?
            WHERE run_id = ? AND step_id = ? AND completed_at IS NULL
            """,
            _now(),
            status,
            json.dumps(output, default=str),
            error,
            run_id,
            step_id,
        )

    async def mark_run_completed(
        self, run_id: str, status: str = "completed", error: str | None = None
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE action_runs SET status = ?, error = ? WHERE run_id = ?",
            status,
            error,
            run_id,
        )

    async def get_run(self, run_id: str) -> ActionRun | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT run_id, action_name, definition, input, status, error FROM action_runs WHERE run_id = ?",
            run_id,
        )
        if not row:
            return None
        steps_rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, run_id, step_id, service, started_at, completed_at, status, output, error "
            "FROM step_history WHERE run_id = ? ORDER BY id",
            run_id,
        )
        steps = [
            StepRecord(
                id=r["id"],
                run_id=r["run_id"],
                step_id=r["step_id"],
                service=r["service"],
                started_at=datetime.fromisoformat(r["started_at"]) if r["started_at"] else None,
                completed_at=datetime.fromisoformat(r["completed_at"]) if r["completed_at"] else None,
                status=r["status"],
                output=json.loads(r["output"]) if r["output"] else None,
                error=r["error"],
            )
            for r in steps_rows
        ]
        return self._row_to_run(row, steps)

    async def list_runs(self) -> list[ActionRun]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT run_id, action_name, definition, input, status, error FROM action_runs",
        )
        return [self._row_to_run(row, []) for row in rows]
