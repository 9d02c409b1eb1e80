"""Durable history of batch runs and archive attempts.

Two record kinds are kept: a batch run per archiver invocation, and an archive
attempt per (document, case) pair. Attempts are written before the archive is
called, so a crash leaves an unresolved NOT_COMPLETED marker behind that a
later run of the same case supersedes.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, Optional

import asyncpg
import structlog

from case_archiver.database import DatabaseManager
from case_archiver.exceptions import DatabaseError, DuplicateAttemptError
from case_archiver.models import ArchiveAttempt, ArchiveStatus, BatchRun, BatchTrigger
from utils.logging import get_logger


class HistoryStore(ABC):
    """Abstract base class for history storage backends."""

    async def initialize(self) -> None:
        """Prepare the backend (create tables etc.)."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def create_batch_run(self, start: date, end: date, trigger: BatchTrigger) -> BatchRun:
        """Persist a new NOT_COMPLETED batch run and return it with its ID."""

    @abstractmethod
    async def get_batch_run(self, batch_run_id: int) -> Optional[BatchRun]:
        """Return the batch run, or None if it does not exist."""

    @abstractmethod
    async def list_batch_runs(self, status: Optional[ArchiveStatus] = None) -> list[BatchRun]:
        """Return batch runs ordered by ID, optionally filtered by status."""

    @abstractmethod
    async def latest_completed_batch_run(self) -> Optional[BatchRun]:
        """Return the COMPLETED batch run with the latest end date."""

    @abstractmethod
    async def mark_batch_run_completed(self, batch_run_id: int) -> None:
        """Set a run to COMPLETED. Completed runs are never reopened."""

    @abstractmethod
    async def find_attempt(self, document_id: str, case_id: str) -> Optional[ArchiveAttempt]:
        """Return the attempt for a (document, case) pair, if any."""

    @abstractmethod
    async def create_attempt(self, attempt: ArchiveAttempt) -> ArchiveAttempt:
        """Persist a new attempt.

        Raises:
            DuplicateAttemptError: If an attempt for the pair already exists
        """

    @abstractmethod
    async def complete_attempt(
        self, attempt_id: int, archive_id: str, archive_url: str
    ) -> ArchiveAttempt:
        """Mark an attempt COMPLETED with its archive reference."""

    @abstractmethod
    async def delete_unresolved_attempts(self, case_id: str) -> int:
        """Delete the NOT_COMPLETED attempts of a case and return how many were removed."""

    @abstractmethod
    async def list_attempts(
        self,
        batch_run_id: Optional[int] = None,
        status: Optional[ArchiveStatus] = None,
    ) -> list[ArchiveAttempt]:
        """Return attempts ordered by ID, optionally filtered."""

    async def all_attempts_completed(self, batch_run_id: int) -> bool:
        """Whether every attempt owned by the run is COMPLETED (true for none)."""
        attempts = await self.list_attempts(batch_run_id=batch_run_id)
        return all(attempt.is_completed for attempt in attempts)


class InMemoryHistoryStore(HistoryStore):
    """Process-local history store with the same semantics as the database store."""

    def __init__(self, logger: Optional[structlog.BoundLogger] = None) -> None:
        self.logger = logger or get_logger("history_store")
        self._runs: dict[int, BatchRun] = {}
        self._attempts: dict[int, ArchiveAttempt] = {}
        self._next_run_id = 1
        self._next_attempt_id = 1

    async def create_batch_run(self, start: date, end: date, trigger: BatchTrigger) -> BatchRun:
        run = BatchRun(
            id=self._next_run_id,
            start=start,
            end=end,
            trigger=trigger,
            status=ArchiveStatus.NOT_COMPLETED,
            created_at=datetime.now(timezone.utc),
        )
        self._next_run_id += 1
        self._runs[run.id] = run
        return run.model_copy()

    async def get_batch_run(self, batch_run_id: int) -> Optional[BatchRun]:
        run = self._runs.get(batch_run_id)
        return run.model_copy() if run else None

    async def list_batch_runs(self, status: Optional[ArchiveStatus] = None) -> list[BatchRun]:
        return [
            run.model_copy()
            for run_id, run in sorted(self._runs.items())
            if status is None or run.status == status
        ]

    async def latest_completed_batch_run(self) -> Optional[BatchRun]:
        completed = [run for run in self._runs.values() if run.is_completed]
        if not completed:
            return None
        # Ties on end date go to the most recently created run
        return max(completed, key=lambda run: (run.end, run.id)).model_copy()

    async def mark_batch_run_completed(self, batch_run_id: int) -> None:
        run = self._runs.get(batch_run_id)
        if run is None:
            raise DatabaseError("Batch run not found", context={"batch_run_id": batch_run_id})
        run.status = ArchiveStatus.COMPLETED

    async def find_attempt(self, document_id: str, case_id: str) -> Optional[ArchiveAttempt]:
        for attempt in self._attempts.values():
            if attempt.document_id == document_id and attempt.case_id == case_id:
                return attempt.model_copy()
        return None

    async def create_attempt(self, attempt: ArchiveAttempt) -> ArchiveAttempt:
        if await self.find_attempt(attempt.document_id, attempt.case_id) is not None:
            raise DuplicateAttemptError(
                "Archive attempt already exists",
                context={"document_id": attempt.document_id, "case_id": attempt.case_id},
            )
        if attempt.batch_run_id not in self._runs:
            raise DatabaseError(
                "Batch run not found", context={"batch_run_id": attempt.batch_run_id}
            )

        now = datetime.now(timezone.utc)
        stored = attempt.model_copy(
            update={"id": self._next_attempt_id, "created_at": now, "updated_at": now}
        )
        self._next_attempt_id += 1
        self._attempts[stored.id] = stored
        return stored.model_copy()

    async def complete_attempt(
        self, attempt_id: int, archive_id: str, archive_url: str
    ) -> ArchiveAttempt:
        attempt = self._attempts.get(attempt_id)
        if attempt is None:
            raise DatabaseError("Archive attempt not found", context={"attempt_id": attempt_id})
        attempt.status = ArchiveStatus.COMPLETED
        attempt.archive_id = archive_id
        attempt.archive_url = archive_url
        attempt.updated_at = datetime.now(timezone.utc)
        return attempt.model_copy()

    async def delete_unresolved_attempts(self, case_id: str) -> int:
        doomed = [
            attempt_id
            for attempt_id, attempt in self._attempts.items()
            if attempt.case_id == case_id and not attempt.is_completed
        ]
        for attempt_id in doomed:
            del self._attempts[attempt_id]
        return len(doomed)

    async def list_attempts(
        self,
        batch_run_id: Optional[int] = None,
        status: Optional[ArchiveStatus] = None,
    ) -> list[ArchiveAttempt]:
        return [
            attempt.model_copy()
            for _, attempt in sorted(self._attempts.items())
            if (batch_run_id is None or attempt.batch_run_id == batch_run_id)
            and (status is None or attempt.status == status)
        ]


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS batch_runs (
        id BIGSERIAL PRIMARY KEY,
        start_date DATE NOT NULL,
        end_date DATE NOT NULL,
        trigger TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'NOT_COMPLETED',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS archive_attempts (
        id BIGSERIAL PRIMARY KEY,
        document_id TEXT NOT NULL,
        case_id TEXT NOT NULL,
        document_name TEXT,
        document_type TEXT,
        batch_run_id BIGINT NOT NULL REFERENCES batch_runs (id),
        status TEXT NOT NULL DEFAULT 'NOT_COMPLETED',
        archive_id TEXT,
        archive_url TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT uq_archive_attempts_document_case UNIQUE (document_id, case_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_archive_attempts_batch_run ON archive_attempts (batch_run_id)",
    "CREATE INDEX IF NOT EXISTS idx_archive_attempts_case_status ON archive_attempts (case_id, status)",
)

_BATCH_RUN_COLUMNS = "id, start_date, end_date, trigger, status, created_at"
_ATTEMPT_COLUMNS = (
    "id, document_id, case_id, document_name, document_type, batch_run_id, "
    "status, archive_id, archive_url, created_at, updated_at"
)


def _row_to_batch_run(row: Any) -> BatchRun:
    return BatchRun(
        id=row["id"],
        start=row["start_date"],
        end=row["end_date"],
        trigger=BatchTrigger(row["trigger"]),
        status=ArchiveStatus(row["status"]),
        created_at=row["created_at"],
    )


def _row_to_attempt(row: Any) -> ArchiveAttempt:
    return ArchiveAttempt(
        id=row["id"],
        document_id=row["document_id"],
        case_id=row["case_id"],
        document_name=row["document_name"],
        document_type=row["document_type"],
        batch_run_id=row["batch_run_id"],
        status=ArchiveStatus(row["status"]),
        archive_id=row["archive_id"],
        archive_url=row["archive_url"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresHistoryStore(HistoryStore):
    """History store backed by the batch_runs and archive_attempts tables."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.db_manager = db_manager
        self.logger = logger or get_logger("history_store")

    async def initialize(self) -> None:
        """Connect and create the history tables if they do not exist."""
        await self.db_manager.connect()
        for statement in SCHEMA_STATEMENTS:
            await self.db_manager.execute(statement)
        self.logger.debug("History tables ready", database=self.db_manager.config.name)

    async def close(self) -> None:
        await self.db_manager.disconnect()

    async def create_batch_run(self, start: date, end: date, trigger: BatchTrigger) -> BatchRun:
        row = await self.db_manager.fetchrow(
            f"""
            INSERT INTO batch_runs (start_date, end_date, trigger, status)
            VALUES ($1, $2, $3, $4)
            RETURNING {_BATCH_RUN_COLUMNS}
            """,
            start,
            end,
            trigger.value,
            ArchiveStatus.NOT_COMPLETED.value,
        )
        return _row_to_batch_run(row)

    async def get_batch_run(self, batch_run_id: int) -> Optional[BatchRun]:
        row = await self.db_manager.fetchrow(
            f"SELECT {_BATCH_RUN_COLUMNS} FROM batch_runs WHERE id = $1",
            batch_run_id,
        )
        return _row_to_batch_run(row) if row else None

    async def list_batch_runs(self, status: Optional[ArchiveStatus] = None) -> list[BatchRun]:
        if status is None:
            rows = await self.db_manager.fetch(
                f"SELECT {_BATCH_RUN_COLUMNS} FROM batch_runs ORDER BY id"
            )
        else:
            rows = await self.db_manager.fetch(
                f"SELECT {_BATCH_RUN_COLUMNS} FROM batch_runs WHERE status = $1 ORDER BY id",
                status.value,
            )
        return [_row_to_batch_run(row) for row in rows]

    async def latest_completed_batch_run(self) -> Optional[BatchRun]:
        row = await self.db_manager.fetchrow(
            f"""
            SELECT {_BATCH_RUN_COLUMNS} FROM batch_runs
            WHERE status = $1
            ORDER BY end_date DESC, id DESC
            LIMIT 1
            """,
            ArchiveStatus.COMPLETED.value,
        )
        return _row_to_batch_run(row) if row else None

    async def mark_batch_run_completed(self, batch_run_id: int) -> None:
        await self.db_manager.execute(
            "UPDATE batch_runs SET status = $2 WHERE id = $1",
            batch_run_id,
            ArchiveStatus.COMPLETED.value,
        )

    async def find_attempt(self, document_id: str, case_id: str) -> Optional[ArchiveAttempt]:
        row = await self.db_manager.fetchrow(
            f"""
            SELECT {_ATTEMPT_COLUMNS} FROM archive_attempts
            WHERE document_id = $1 AND case_id = $2
            """,
            document_id,
            case_id,
        )
        return _row_to_attempt(row) if row else None

    async def create_attempt(self, attempt: ArchiveAttempt) -> ArchiveAttempt:
        try:
            row = await self.db_manager.fetchrow(
                f"""
                INSERT INTO archive_attempts
                    (document_id, case_id, document_name, document_type, batch_run_id, status)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING {_ATTEMPT_COLUMNS}
                """,
                attempt.document_id,
                attempt.case_id,
                attempt.document_name,
                attempt.document_type,
                attempt.batch_run_id,
                attempt.status.value,
            )
        except DatabaseError as e:
            if isinstance(e.__cause__, asyncpg.UniqueViolationError):
                raise DuplicateAttemptError(
                    "Archive attempt already exists",
                    context={"document_id": attempt.document_id, "case_id": attempt.case_id},
                ) from e
            raise
        return _row_to_attempt(row)

    async def complete_attempt(
        self, attempt_id: int, archive_id: str, archive_url: str
    ) -> ArchiveAttempt:
        row = await self.db_manager.fetchrow(
            f"""
            UPDATE archive_attempts
            SET status = $2, archive_id = $3, archive_url = $4, updated_at = NOW()
            WHERE id = $1
            RETURNING {_ATTEMPT_COLUMNS}
            """,
            attempt_id,
            ArchiveStatus.COMPLETED.value,
            archive_id,
            archive_url,
        )
        if row is None:
            raise DatabaseError("Archive attempt not found", context={"attempt_id": attempt_id})
        return _row_to_attempt(row)

    async def delete_unresolved_attempts(self, case_id: str) -> int:
        status = await self.db_manager.execute(
            "DELETE FROM archive_attempts WHERE case_id = $1 AND status = $2",
            case_id,
            ArchiveStatus.NOT_COMPLETED.value,
        )
        # asyncpg returns the command tag, e.g. "DELETE 2"
        try:
            return int(status.split()[-1])
        except (AttributeError, IndexError, ValueError):
            return 0

    async def list_attempts(
        self,
        batch_run_id: Optional[int] = None,
        status: Optional[ArchiveStatus] = None,
    ) -> list[ArchiveAttempt]:
        conditions = []
        args: list[Any] = []
        if batch_run_id is not None:
            args.append(batch_run_id)
            conditions.append(f"batch_run_id = ${len(args)}")
        if status is not None:
            args.append(status.value)
            conditions.append(f"status = ${len(args)}")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await self.db_manager.fetch(
            f"SELECT {_ATTEMPT_COLUMNS} FROM archive_attempts {where} ORDER BY id",
            *args,
        )
        return [_row_to_attempt(row) for row in rows]

    async def all_attempts_completed(self, batch_run_id: int) -> bool:
        unresolved = await self.db_manager.fetchval(
            "SELECT EXISTS (SELECT 1 FROM archive_attempts WHERE batch_run_id = $1 AND status <> $2)",
            batch_run_id,
            ArchiveStatus.COMPLETED.value,
        )
        return not unresolved
