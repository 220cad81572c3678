"""Result persistence -- where the final best candidate and its scores land."""

from __future__ import annotations

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PersistenceError(Exception):
    """Raised when a result cannot be stored or read back."""

    def __init__(self, message: str, document_id: str | None = None) -> None:
        self.document_id = document_id
        super().__init__(message)


class StoredResult(BaseModel):
    """Acknowledgement of a stored result, also the shape read back."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    final_text: str
    scores: dict[str, float]
    metadata: dict[str, Any] = Field(default_factory=dict)
    stored_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))


class ResultPersister(ABC):
    """Abstract store for final refinement results, keyed by document id."""

    @abstractmethod
    def store(
        self,
        document_id: str,
        final_text: str,
        scores: Mapping[str, float],
        metadata: Mapping[str, Any] | None = None,
    ) -> StoredResult:
        """Insert or replace the result for *document_id*."""

    @abstractmethod
    def get(self, document_id: str) -> StoredResult | None:
        """Return the stored result, or ``None``."""

    @abstractmethod
    def list_results(self, limit: int = 50, offset: int = 0) -> list[StoredResult]:
        """Most recently stored first."""


class InMemoryResultStore(ResultPersister):
    """Dict-backed store for tests and one-off runs."""

    def __init__(self) -> None:
        self._results: dict[str, StoredResult] = {}

    def store(
        self,
        document_id: str,
        final_text: str,
        scores: Mapping[str, float],
        metadata: Mapping[str, Any] | None = None,
    ) -> StoredResult:
        result = StoredResult(
            document_id=document_id,
            final_text=final_text,
            scores=dict(scores),
            metadata=dict(metadata or {}),
        )
        self._results[document_id] = result
        return result

    def get(self, document_id: str) -> StoredResult | None:
        return self._results.get(document_id)

    def list_results(self, limit: int = 50, offset: int = 0) -> list[StoredResult]:
        ordered = sorted(self._results.values(), key=lambda r: r.stored_at, reverse=True)
        return ordered[offset : offset + limit]


class SQLiteResultStore(ResultPersister):
    """SQLite-backed result store (one row per document id)."""

    def __init__(self, db_path: str = ":memory:") -> None:
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute(
                """CREATE TABLE IF NOT EXISTS verse_results (
                    document_id TEXT PRIMARY KEY,
                    final_text TEXT NOT NULL,
                    scores TEXT NOT NULL,
                    metadata TEXT NOT NULL,
                    stored_at TEXT NOT NULL
                )"""
            )
            self._conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open result store at {db_path}: {exc}") from exc

    def store(
        self,
        document_id: str,
        final_text: str,
        scores: Mapping[str, float],
        metadata: Mapping[str, Any] | None = None,
    ) -> StoredResult:
        result = StoredResult(
            document_id=document_id,
            final_text=final_text,
            scores=dict(scores),
            metadata=dict(metadata or {}),
        )
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT INTO verse_results "
                    "(document_id, final_text, scores, metadata, stored_at) "
                    "VALUES (?, ?, ?, ?, ?) "
                    "ON CONFLICT(document_id) DO UPDATE SET "
                    "final_text=excluded.final_text, scores=excluded.scores, "
                    "metadata=excluded.metadata, stored_at=excluded.stored_at",
                    (
                        result.document_id,
                        result.final_text,
                        json.dumps(result.scores),
                        json.dumps(result.metadata, default=str),
                        result.stored_at.isoformat(),
                    ),
                )
                self._conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as exc:
            raise PersistenceError(
                f"Failed to store result for {document_id}: {exc}", document_id=document_id
            ) from exc
        return result

    def get(self, document_id: str) -> StoredResult | None:
        cursor = self._conn.execute(
            "SELECT document_id, final_text, scores, metadata, stored_at "
            "FROM verse_results WHERE document_id = ?",
            (document_id,),
        )
        row = cursor.fetchone()
        return self._row_to_result(row) if row else None

    def list_results(self, limit: int = 50, offset: int = 0) -> list[StoredResult]:
        cursor = self._conn.execute(
            "SELECT document_id, final_text, scores, metadata, stored_at "
            "FROM verse_results ORDER BY stored_at DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [self._row_to_result(row) for row in cursor.fetchall()]

    @staticmethod
    def _row_to_result(row: tuple) -> StoredResult:
        document_id, final_text, scores, metadata, stored_at = row
        return StoredResult(
            document_id=document_id,
            final_text=final_text,
            scores=json.loads(scores),
            metadata=json.loads(metadata),
            stored_at=datetime.fromisoformat(stored_at),
        )

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()
