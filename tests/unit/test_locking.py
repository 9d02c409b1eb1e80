"""Unit tests for locking module."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from case_archiver.exceptions import LockError
from case_archiver.locking import LockManager, advisory_lock_id


@pytest.fixture
def lock_dir(tmp_path: Path) -> Path:
    return tmp_path / "locks"


def _postgres_manager(acquired: bool = True) -> tuple[LockManager, MagicMock]:
    conn = MagicMock()
    conn.fetchval = AsyncMock(side_effect=[acquired, True])
    db_manager = MagicMock()
    db_manager.connect = AsyncMock()
    db_manager.pool.acquire = AsyncMock(return_value=conn)
    db_manager.pool.release = AsyncMock()
    return LockManager(lock_type="postgresql", db_manager=db_manager), conn


def test_lock_manager_validation(lock_dir: Path) -> None:
    """Test lock manager rejects unknown types and missing backends."""
    with pytest.raises(ValueError, match="Invalid lock_type"):
        LockManager(lock_type="redis", lock_file_dir=lock_dir)
    with pytest.raises(ValueError, match="db_manager"):
        LockManager(lock_type="postgresql")
    with pytest.raises(ValueError, match="lock_file_dir"):
        LockManager(lock_type="file")


def test_advisory_lock_id_is_stable() -> None:
    """Test the advisory lock ID is deterministic and fits a signed int4."""
    assert advisory_lock_id("case-archiver") == advisory_lock_id("case-archiver")
    assert advisory_lock_id("case-archiver") != advisory_lock_id("other")
    assert 0 <= advisory_lock_id("case-archiver") <= 0x7FFFFFFF


@pytest.mark.asyncio
async def test_file_lock_acquire_and_release(lock_dir: Path) -> None:
    """Test a file lock writes and removes its lock file."""
    manager = LockManager(lock_type="file", lock_file_dir=lock_dir, lock_ttl_seconds=60)

    lock = await manager.acquire_lock("case-archiver")

    lock_file = lock_dir / "case-archiver.lock"
    data = json.loads(lock_file.read_text())
    assert data["lock_key"] == "case-archiver"
    assert data["owner"] == lock.owner
    assert not lock.is_expired()

    await manager.release_lock(lock)
    assert not lock_file.exists()


@pytest.mark.asyncio
async def test_file_lock_held_by_other_process(lock_dir: Path) -> None:
    """Test a live lock file blocks acquisition."""
    first = LockManager(lock_type="file", lock_file_dir=lock_dir)
    second = LockManager(lock_type="file", lock_file_dir=lock_dir)
    await first.acquire_lock("case-archiver")

    with pytest.raises(LockError, match="Lock already held: case-archiver"):
        await second.acquire_lock("case-archiver")


@pytest.mark.asyncio
async def test_file_lock_held_by_this_instance(lock_dir: Path) -> None:
    """Test the same instance cannot take its own lock twice."""
    manager = LockManager(lock_type="file", lock_file_dir=lock_dir)
    await manager.acquire_lock("case-archiver")

    with pytest.raises(LockError, match="by this instance"):
        await manager.acquire_lock("case-archiver")


@pytest.mark.asyncio
async def test_stale_file_lock_is_replaced(lock_dir: Path) -> None:
    """Test an expired lock file is removed and the lock taken."""
    lock_dir.mkdir(parents=True)
    expired = datetime.now(timezone.utc) - timedelta(minutes=5)
    (lock_dir / "case-archiver.lock").write_text(
        json.dumps({"lock_key": "case-archiver", "expires_at": expired.isoformat(), "owner": "x"})
    )
    manager = LockManager(lock_type="file", lock_file_dir=lock_dir)

    lock = await manager.acquire_lock("case-archiver")

    data = json.loads((lock_dir / "case-archiver.lock").read_text())
    assert data["owner"] == lock.owner


@pytest.mark.asyncio
async def test_invalid_file_lock_is_replaced(lock_dir: Path) -> None:
    """Test an unreadable lock file is removed and the lock taken."""
    lock_dir.mkdir(parents=True)
    (lock_dir / "case-archiver.lock").write_text("not json")
    manager = LockManager(lock_type="file", lock_file_dir=lock_dir)

    lock = await manager.acquire_lock("case-archiver")

    assert lock.lock_key == "case-archiver"


@pytest.mark.asyncio
async def test_hold_releases_on_error(lock_dir: Path) -> None:
    """Test the lock is released when the block raises."""
    manager = LockManager(lock_type="file", lock_file_dir=lock_dir)

    with pytest.raises(RuntimeError):
        async with manager.hold("case-archiver"):
            assert (lock_dir / "case-archiver.lock").exists()
            raise RuntimeError("run failed")

    assert not (lock_dir / "case-archiver.lock").exists()
    async with manager.hold("case-archiver"):
        pass


@pytest.mark.asyncio
async def test_hold_heartbeat_extends_file_lock(lock_dir: Path) -> None:
    """Test the heartbeat pushes the lock file expiry forward."""
    manager = LockManager(
        lock_type="file",
        lock_file_dir=lock_dir,
        lock_ttl_seconds=60,
        heartbeat_interval_seconds=0.01,
    )

    async with manager.hold("case-archiver") as lock:
        initial = lock.expires_at
        await asyncio.sleep(0.05)
        data = json.loads((lock_dir / "case-archiver.lock").read_text())
        assert lock.expires_at > initial
        assert datetime.fromisoformat(data["expires_at"]) > initial


@pytest.mark.asyncio
async def test_postgresql_lock_acquire_and_release() -> None:
    """Test the advisory lock is held on a dedicated pooled connection."""
    manager, conn = _postgres_manager(acquired=True)

    lock = await manager.acquire_lock("case-archiver")

    assert lock.connection is conn
    lock_id = advisory_lock_id("case-archiver")
    conn.fetchval.assert_any_await("SELECT pg_try_advisory_lock($1)", lock_id)
    manager.db_manager.pool.release.assert_not_awaited()

    await manager.release_lock(lock)

    conn.fetchval.assert_any_await("SELECT pg_advisory_unlock($1)", lock_id)
    manager.db_manager.pool.release.assert_awaited_once_with(conn)
    assert lock.connection is None


@pytest.mark.asyncio
async def test_postgresql_lock_held_elsewhere() -> None:
    """Test a lock held by another session is reported and the connection returned."""
    manager, conn = _postgres_manager(acquired=False)

    with pytest.raises(LockError, match="Lock already held"):
        await manager.acquire_lock("case-archiver")

    manager.db_manager.pool.release.assert_awaited_once_with(conn)


@pytest.mark.asyncio
async def test_postgresql_lock_connect_failure() -> None:
    """Test database failures become lock errors."""
    manager, _ = _postgres_manager()
    manager.db_manager.connect.side_effect = OSError("refused")

    with pytest.raises(LockError, match="Failed to acquire PostgreSQL lock"):
        await manager.acquire_lock("case-archiver")
