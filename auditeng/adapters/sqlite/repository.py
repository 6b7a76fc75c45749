"""
SQLite Repository - Analysis and feedback storage.

Features:
- Async operations via aiosqlite
- Compare-and-set status transitions in a single UPDATE
- JSON columns for request, extraction and non-conformities
- Tenant-scoped reads
"""

from __future__ import annotations

import json
import logging
from collections.abc import Collection
from pathlib import Path
from typing import Any

import aiosqlite

from auditeng.config.errors import StorageError
from auditeng.domains.analysis.models import Analysis, AnalysisStatus, Feedback
from auditeng.domains.validation.models import TestType

logger = logging.getLogger(__name__)

__all__ = ["SQLiteAnalysisRepository"]

_ANALYSIS_COLUMNS = (
    "id",
    "company_id",
    "test_type",
    "status",
    "request",
    "extraction",
    "non_conformities",
    "verdict",
    "score",
    "confidence",
    "tokens_consumed",
    "cost",
    "processing_ms",
    "error_message",
    "created_at",
    "updated_at",
    "completed_at",
)


def _json(value: Any) -> str | None:
    return None if value is None else json.dumps(value)


def _analysis_params(analysis: Analysis) -> dict[str, Any]:
    data = analysis.model_dump(mode="json")
    return {
        **data,
        "request": _json(data["request"]),
        "extraction": _json(data["extraction"]),
        "non_conformities": json.dumps(data["non_conformities"]),
    }


def _row_to_analysis(row: aiosqlite.Row) -> Analysis:
    data = dict(row)
    data["request"] = json.loads(data["request"])
    data["extraction"] = json.loads(data["extraction"]) if data["extraction"] else None
    data["non_conformities"] = json.loads(data["non_conformities"] or "[]")
    return Analysis.model_validate(data)


def _row_to_feedback(row: aiosqlite.Row) -> Feedback:
    data = dict(row)
    data["original_value"] = json.loads(data["original_value"]) if data["original_value"] else None
    data["corrected_value"] = json.loads(data["corrected_value"]) if data["corrected_value"] else None
    data["incorporated"] = bool(data["incorporated"])
    return Feedback.model_validate(data)


class SQLiteAnalysisRepository:
    """
    SQLite repository for analyses and feedback.

    Example:
        >>> repo = SQLiteAnalysisRepository("data/auditeng.db")
        >>> await repo.initialize()
        >>> await repo.create_analysis(analysis)
        >>> ok = await repo.transition(processing, {AnalysisStatus.PENDING})
    """

    def __init__(self, db_path: str | Path) -> None:
        """
        Initialize repository.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection: aiosqlite.Connection | None = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(str(self.db_path))
            self._connection.row_factory = aiosqlite.Row
        return self._connection

    async def initialize(self) -> None:
        """Initialize database schema."""
        conn = await self._get_connection()

        await conn.executescript("""
            -- Analyses table
            CREATE TABLE IF NOT EXISTS analyses (
                id TEXT PRIMARY KEY,
                company_id TEXT NOT NULL,
                test_type TEXT NOT NULL,
                status TEXT NOT NULL,
                request TEXT NOT NULL,
                extraction TEXT,
                non_conformities TEXT NOT NULL DEFAULT '[]',
                verdict TEXT,
                score INTEGER,
                confidence REAL,
                tokens_consumed INTEGER NOT NULL DEFAULT 0,
                cost REAL NOT NULL DEFAULT 0,
                processing_ms REAL,
                error_message TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT
            );

            -- Feedback table
            CREATE TABLE IF NOT EXISTS feedback (
                id TEXT PRIMARY KEY,
                analysis_id TEXT NOT NULL,
                company_id TEXT NOT NULL,
                user_id TEXT,
                feedback_type TEXT NOT NULL,
                original_value TEXT,
                corrected_value TEXT,
                explanation TEXT,
                incorporated INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                FOREIGN KEY (analysis_id) REFERENCES analyses(id)
            );

            -- Indexes
            CREATE INDEX IF NOT EXISTS idx_analyses_company ON analyses(company_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_analyses_status ON analyses(status);
            CREATE INDEX IF NOT EXISTS idx_feedback_analysis ON feedback(analysis_id);
        """)

        await conn.commit()
        logger.info("Database initialized: %s", self.db_path)

    async def _write(self, sql: str, params: Any) -> int:
        """Execute one statement and commit; returns the affected row count."""
        conn = await self._get_connection()
        try:
            cursor = await conn.execute(sql, params)
            await conn.commit()
        except aiosqlite.Error as e:
            logger.error("Database write failed: %s", e)
            raise StorageError(f"Database write failed: {e}") from e
        return cursor.rowcount

    # --- Analyses ---

    async def create_analysis(self, analysis: Analysis) -> None:
        """Insert a new analysis."""
        columns = ", ".join(_ANALYSIS_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in _ANALYSIS_COLUMNS)
        await self._write(
            f"INSERT INTO analyses ({columns}) VALUES ({placeholders})",
            _analysis_params(analysis),
        )

    async def get_analysis(self, analysis_id: str, company_id: str | None = None) -> Analysis | None:
        """Get analysis by ID, optionally restricted to one tenant."""
        conn = await self._get_connection()

        if company_id is not None:
            cursor = await conn.execute(
                "SELECT * FROM analyses WHERE id = ? AND company_id = ?",
                (analysis_id, company_id),
            )
        else:
            cursor = await conn.execute("SELECT * FROM analyses WHERE id = ?", (analysis_id,))

        row = await cursor.fetchone()
        if row:
            return _row_to_analysis(row)
        return None

    async def transition(self, analysis: Analysis, expected: Collection[AnalysisStatus]) -> bool:
        """
        Store the whole record if the current status is one of expected.

        Returns:
            False when the stored status did not match
        """
        statuses = [s.value for s in expected]
        if not statuses:
            return False

        assignments = ", ".join(f"{c} = :{c}" for c in _ANALYSIS_COLUMNS if c != "id")
        placeholders = ", ".join(f":expected_{i}" for i in range(len(statuses)))
        params = _analysis_params(analysis)
        params.update({f"expected_{i}": s for i, s in enumerate(statuses)})

        updated = await self._write(
            f"UPDATE analyses SET {assignments} WHERE id = :id AND status IN ({placeholders})",
            params,
        )
        if updated != 1:
            logger.debug(
                "Transition of %s to %s refused (expected %s)",
                analysis.id,
                analysis.status.value,
                ", ".join(statuses),
            )
        return updated == 1

    async def list_analyses(
        self,
        company_id: str,
        status: AnalysisStatus | None = None,
        test_type: TestType | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Analysis]:
        """List a tenant's analyses, newest first."""
        conn = await self._get_connection()

        sql = "SELECT * FROM analyses WHERE company_id = ?"
        params: list[Any] = [company_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        if test_type is not None:
            sql += " AND test_type = ?"
            params.append(test_type.value)
        sql += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        cursor = await conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [_row_to_analysis(row) for row in rows]

    async def count_analyses(self, company_id: str) -> int:
        """Get analysis count for a tenant."""
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT COUNT(*) FROM analyses WHERE company_id = ?", (company_id,))
        row = await cursor.fetchone()
        return row[0] if row else 0

    # --- Feedback ---

    async def create_feedback(self, feedback: Feedback) -> None:
        """Insert a feedback record."""
        await self._write(
            """
            INSERT INTO feedback
            (id, analysis_id, company_id, user_id, feedback_type, original_value,
             corrected_value, explanation, incorporated, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                feedback.id,
                feedback.analysis_id,
                feedback.company_id,
                feedback.user_id,
                feedback.feedback_type.value,
                _json(feedback.original_value),
                _json(feedback.corrected_value),
                feedback.explanation,
                int(feedback.incorporated),
                feedback.created_at.isoformat(),
            ),
        )

    async def get_feedback(self, feedback_id: str) -> Feedback | None:
        """Get feedback by ID."""
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM feedback WHERE id = ?", (feedback_id,))
        row = await cursor.fetchone()
        if row:
            return _row_to_feedback(row)
        return None

    async def list_feedback(self, analysis_id: str) -> list[Feedback]:
        """Feedback for one analysis, oldest first."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM feedback WHERE analysis_id = ? ORDER BY created_at",
            (analysis_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_feedback(row) for row in rows]

    async def mark_feedback_incorporated(self, feedback_id: str) -> bool:
        """Flag feedback as folded into the knowledge index."""
        updated = await self._write("UPDATE feedback SET incorporated = 1 WHERE id = ?", (feedback_id,))
        return updated == 1

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
