"""Single-flight run lock so that only one batch run executes at a time."""

import asyncio
import json
import os
import time
import zlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import structlog

from case_archiver.database import DatabaseManager
from case_archiver.exceptions import LockError
from utils.logging import get_logger


class Lock:
    """Represents a held run lock."""

    def __init__(
        self,
        lock_key: str,
        acquired_at: datetime,
        expires_at: datetime,
        owner: str,
    ) -> None:
        """Initialize lock.

        Args:
            lock_key: Lock key
            acquired_at: When lock was acquired
            expires_at: When lock expires unless extended
            owner: Lock owner identifier
        """
        self.lock_key = lock_key
        self.acquired_at = acquired_at
        self.expires_at = expires_at
        self.owner = owner
        self.connection: Optional[Any] = None

    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.expires_at


def advisory_lock_id(lock_key: str) -> int:
    """Stable int4 advisory lock ID for a key (same in every process)."""
    return zlib.crc32(lock_key.encode("utf-8")) & 0x7FFFFFFF


class LockManager:
    """Manages the run lock, backed by a PostgreSQL advisory lock or a lock file."""

    def __init__(
        self,
        lock_type: str = "postgresql",
        lock_ttl_seconds: int = 3600,
        heartbeat_interval_seconds: int = 30,
        db_manager: Optional[DatabaseManager] = None,
        lock_file_dir: Optional[Path] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize lock manager.

        Args:
            lock_type: Lock type ("postgresql" or "file")
            lock_ttl_seconds: Lock time-to-live in seconds (file locks)
            heartbeat_interval_seconds: Heartbeat interval in seconds (file locks)
            db_manager: Database manager (required for PostgreSQL locks)
            lock_file_dir: Lock file directory (required for file locks)
            logger: Optional logger instance

        Raises:
            ValueError: If the lock type is unknown or its backend is missing
        """
        if lock_type not in ("postgresql", "file"):
            raise ValueError(f"Invalid lock_type: {lock_type}. Must be 'postgresql' or 'file'")
        if lock_type == "postgresql" and db_manager is None:
            raise ValueError("db_manager is required for PostgreSQL locks")
        if lock_type == "file" and lock_file_dir is None:
            raise ValueError("lock_file_dir is required for file-based locks")

        self.lock_type = lock_type
        self.lock_ttl_seconds = lock_ttl_seconds
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self.db_manager = db_manager
        self.lock_file_dir = Path(lock_file_dir) if lock_file_dir is not None else None
        self.logger = logger or get_logger("lock_manager")
        self._lock_owner = f"case_archiver_{os.getpid()}_{int(time.time())}"
        self._held: dict[str, Lock] = {}

    @asynccontextmanager
    async def hold(self, lock_key: str) -> AsyncGenerator[Lock, None]:
        """Hold the run lock for the duration of the block.

        Raises:
            LockError: If the lock is held elsewhere or cannot be acquired
        """
        lock = await self.acquire_lock(lock_key)
        heartbeat = self._start_heartbeat(lock) if self.lock_type == "file" else None
        try:
            yield lock
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                try:
                    await heartbeat
                except asyncio.CancelledError:
                    pass
            await self.release_lock(lock)

    async def acquire_lock(self, lock_key: str) -> Lock:
        """Acquire the lock for ``lock_key``.

        Raises:
            LockError: If lock cannot be acquired
        """
        if lock_key in self._held:
            raise LockError(
                f"Lock already held by this instance: {lock_key}",
                context={"lock_key": lock_key},
            )

        if self.lock_type == "postgresql":
            lock = await self._acquire_postgresql_lock(lock_key)
        else:
            lock = self._acquire_file_lock(lock_key)

        self._held[lock_key] = lock
        return lock

    async def release_lock(self, lock: Lock) -> None:
        """Release a held lock.

        Raises:
            LockError: If lock release fails
        """
        try:
            if self.lock_type == "postgresql":
                await self._release_postgresql_lock(lock)
            else:
                self._release_file_lock(lock)
        finally:
            self._held.pop(lock.lock_key, None)

    def _new_lock(self, lock_key: str) -> Lock:
        acquired_at = datetime.now(timezone.utc)
        return Lock(
            lock_key=lock_key,
            acquired_at=acquired_at,
            expires_at=acquired_at + timedelta(seconds=self.lock_ttl_seconds),
            owner=self._lock_owner,
        )

    async def _acquire_postgresql_lock(self, lock_key: str) -> Lock:
        """Acquire a session advisory lock on a connection kept for the lock's lifetime."""
        lock_id = advisory_lock_id(lock_key)

        try:
            await self.db_manager.connect()
            conn = await self.db_manager.pool.acquire()
        except Exception as e:
            raise LockError(
                f"Failed to acquire PostgreSQL lock: {e}",
                context={"lock_key": lock_key, "lock_id": lock_id},
            ) from e

        try:
            acquired = await conn.fetchval("SELECT pg_try_advisory_lock($1)", lock_id)
        except Exception as e:
            await self.db_manager.pool.release(conn)
            raise LockError(
                f"Failed to acquire PostgreSQL lock: {e}",
                context={"lock_key": lock_key, "lock_id": lock_id},
            ) from e

        if not acquired:
            await self.db_manager.pool.release(conn)
            raise LockError(
                f"Lock already held: {lock_key}",
                context={"lock_key": lock_key, "lock_id": lock_id},
            )

        lock = self._new_lock(lock_key)
        lock.connection = conn
        self.logger.debug("PostgreSQL advisory lock acquired", lock_key=lock_key, lock_id=lock_id)
        return lock

    async def _release_postgresql_lock(self, lock: Lock) -> None:
        lock_id = advisory_lock_id(lock.lock_key)
        conn = lock.connection
        if conn is None:
            return

        try:
            released = await conn.fetchval("SELECT pg_advisory_unlock($1)", lock_id)
            if released:
                self.logger.debug("PostgreSQL advisory lock released", lock_id=lock_id)
            else:
                self.logger.warning("PostgreSQL lock was not held", lock_id=lock_id)
        except Exception as e:
            raise LockError(
                f"Failed to release PostgreSQL lock: {e}",
                context={"lock_key": lock.lock_key, "lock_id": lock_id},
            ) from e
        finally:
            lock.connection = None
            await self.db_manager.pool.release(conn)

    def _lock_file(self, lock_key: str) -> Path:
        return self.lock_file_dir / f"{lock_key}.lock"

    def _acquire_file_lock(self, lock_key: str) -> Lock:
        """Create the lock file, replacing it only if it is stale or unreadable."""
        lock_file = self._lock_file(lock_key)

        if lock_file.exists():
            try:
                lock_data = json.loads(lock_file.read_text())
                expires_at = datetime.fromisoformat(lock_data["expires_at"])
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                self.logger.warning(
                    "Removing invalid lock file", lock_file=str(lock_file), error=str(e)
                )
                lock_file.unlink(missing_ok=True)
            else:
                if datetime.now(timezone.utc) < expires_at:
                    raise LockError(
                        f"Lock already held: {lock_key}",
                        context={
                            "lock_file": str(lock_file),
                            "expires_at": expires_at.isoformat(),
                            "owner": lock_data.get("owner"),
                        },
                    )
                self.logger.warning(
                    "Removing stale lock file",
                    lock_file=str(lock_file),
                    expired_at=expires_at.isoformat(),
                )
                lock_file.unlink(missing_ok=True)

        lock = self._new_lock(lock_key)
        lock_data = {
            "lock_key": lock_key,
            "acquired_at": lock.acquired_at.isoformat(),
            "expires_at": lock.expires_at.isoformat(),
            "owner": lock.owner,
        }

        try:
            self.lock_file_dir.mkdir(parents=True, exist_ok=True)
            # O_EXCL: a concurrent process creating the file first wins
            fd = os.open(lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as e:
            raise LockError(
                f"Lock already held: {lock_key}", context={"lock_file": str(lock_file)}
            ) from e
        except OSError as e:
            raise LockError(
                f"Failed to acquire file lock: {e}", context={"lock_file": str(lock_file)}
            ) from e

        with os.fdopen(fd, "w") as f:
            json.dump(lock_data, f, indent=2)

        self.logger.debug(
            "File lock acquired",
            lock_key=lock_key,
            lock_file=str(lock_file),
            expires_at=lock.expires_at.isoformat(),
        )
        return lock

    def _release_file_lock(self, lock: Lock) -> None:
        lock_file = self._lock_file(lock.lock_key)
        try:
            if lock_file.exists():
                lock_file.unlink()
                self.logger.debug("File lock released", lock_file=str(lock_file))
            else:
                self.logger.warning(
                    "Lock file not found (may have been removed)", lock_file=str(lock_file)
                )
        except OSError as e:
            raise LockError(
                f"Failed to release file lock: {e}", context={"lock_file": str(lock_file)}
            ) from e

    def _extend_file_lock(self, lock: Lock) -> None:
        lock_file = self._lock_file(lock.lock_key)
        if not lock_file.exists():
            self.logger.warning("Lock file not found during heartbeat", lock_key=lock.lock_key)
            return

        lock_data = json.loads(lock_file.read_text())
        lock_data["expires_at"] = lock.expires_at.isoformat()
        lock_file.write_text(json.dumps(lock_data, indent=2))

    def _start_heartbeat(self, lock: Lock) -> "asyncio.Task[None]":
        """Keep extending the lock file's expiry while the lock is held."""

        async def heartbeat_loop() -> None:
            while True:
                await asyncio.sleep(self.heartbeat_interval_seconds)
                lock.expires_at = datetime.now(timezone.utc) + timedelta(
                    seconds=self.lock_ttl_seconds
                )
                try:
                    self._extend_file_lock(lock)
                except (OSError, ValueError) as e:
                    self.logger.error(
                        "Heartbeat failed", lock_key=lock.lock_key, error=str(e), exc_info=True
                    )
                    continue
                self.logger.debug(
                    "Lock heartbeat sent",
                    lock_key=lock.lock_key,
                    expires_at=lock.expires_at.isoformat(),
                )

        return asyncio.create_task(heartbeat_loop())
