# tests/infra/test_database.py
"""
Тесты для менеджера базы данных.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from src.infra import database
from src.infra.database import SCHEMA_LOCK_ID, DatabaseManager, retry_on_connection_error


class TestRetryOnConnectionError:
    """Повтор запросов при обрыве соединения."""

    @pytest.mark.asyncio
    async def test_retry_then_success(self) -> None:
        call_count = 0

        @retry_on_connection_error(max_attempts=3, delay=0.01)
        async def flaky():
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise asyncpg.PostgresConnectionError("connection lost")
            return "ok"

        assert await flaky() == "ok"
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_max_attempts_exceeded(self) -> None:
        call_count = 0

        @retry_on_connection_error(max_attempts=2, delay=0.01)
        async def always_failing():
            nonlocal call_count
            call_count += 1
            raise ConnectionRefusedError("Connection refused")

        with pytest.raises(ConnectionRefusedError):
            await always_failing()
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_sql_error_not_retried(self) -> None:
        call_count = 0

        @retry_on_connection_error(max_attempts=3, delay=0.01)
        async def bad_sql():
            nonlocal call_count
            call_count += 1
            raise asyncpg.UniqueViolationError("duplicate key")

        with pytest.raises(asyncpg.UniqueViolationError):
            await bad_sql()
        assert call_count == 1


def _pool_with(conn: MagicMock) -> MagicMock:
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.acquire.return_value.__aexit__.return_value = None
    return pool


@pytest.fixture
def db_manager() -> DatabaseManager:
    # Сбрасываем синглтон для каждого теста
    DatabaseManager._instance = None
    DatabaseManager._pool = None
    return DatabaseManager()


class TestDatabaseManager:
    """Тесты для DatabaseManager."""

    def test_singleton(self) -> None:
        DatabaseManager._instance = None

        assert DatabaseManager() is DatabaseManager()

    def test_pool_not_initialized(self, db_manager: DatabaseManager) -> None:
        with pytest.raises(RuntimeError, match="Пул соединений не инициализирован"):
            _ = db_manager.pool

    @pytest.mark.asyncio
    async def test_connect_creates_pool_once(self, db_manager: DatabaseManager) -> None:
        with patch("asyncpg.create_pool", new_callable=AsyncMock, return_value=MagicMock()) as create_pool:
            await db_manager.connect(dsn="postgresql://rp:rp@localhost/ridepool", min_size=2, max_size=5)
            await db_manager.connect(dsn="postgresql://rp:rp@localhost/ridepool")

        create_pool.assert_awaited_once()
        assert db_manager._pool is not None

    @pytest.mark.asyncio
    async def test_disconnect(self, db_manager: DatabaseManager) -> None:
        pool = AsyncMock()
        db_manager._pool = pool

        await db_manager.disconnect()

        pool.close.assert_awaited_once()
        assert db_manager._pool is None

    @pytest.mark.asyncio
    async def test_execute_returns_status(self, db_manager: DatabaseManager) -> None:
        conn = MagicMock()
        conn.execute = AsyncMock(return_value="UPDATE 1")
        db_manager._pool = _pool_with(conn)

        status = await db_manager.execute("UPDATE rides SET status = $2 WHERE id = $1", "ride-1", "started")

        assert status == "UPDATE 1"
        conn.execute.assert_awaited_once_with("UPDATE rides SET status = $2 WHERE id = $1", "ride-1", "started")

    @pytest.mark.asyncio
    async def test_fetchrow(self, db_manager: DatabaseManager) -> None:
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value={"id": "ride-1"})
        db_manager._pool = _pool_with(conn)

        row = await db_manager.fetchrow("SELECT * FROM rides WHERE id = $1", "ride-1")

        assert row == {"id": "ride-1"}

    @pytest.mark.asyncio
    async def test_fetch_retries_after_disconnect(self, db_manager: DatabaseManager) -> None:
        conn = MagicMock()
        conn.fetch = AsyncMock(side_effect=[asyncpg.InterfaceError("connection is closed"), [{"id": "ride-1"}]])
        db_manager._pool = _pool_with(conn)

        with patch("src.infra.database.asyncio.sleep", new_callable=AsyncMock):
            rows = await db_manager.fetch("SELECT * FROM rides")

        assert rows == [{"id": "ride-1"}]
        assert conn.fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_transaction_yields_connection(self, db_manager: DatabaseManager) -> None:
        conn = MagicMock()
        conn.transaction.return_value.__aenter__.return_value = None
        conn.transaction.return_value.__aexit__.return_value = None
        db_manager._pool = _pool_with(conn)

        async with db_manager.transaction() as tx_conn:
            assert tx_conn is conn

        conn.transaction.assert_called_once()

    @pytest.mark.asyncio
    async def test_health_check(self, db_manager: DatabaseManager) -> None:
        conn = MagicMock()
        conn.fetchval = AsyncMock(return_value=1)
        db_manager._pool = _pool_with(conn)

        assert await db_manager.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_without_pool(self, db_manager: DatabaseManager) -> None:
        with patch("src.infra.database.log_error", new_callable=AsyncMock):
            assert await db_manager.health_check() is False


class TestInitSchema:
    """Применение схемы под advisory lock."""

    @pytest.fixture
    def schema_root(self, tmp_path: Path) -> Path:
        (tmp_path / "migrations").mkdir()
        (tmp_path / "migrations" / "init.sql").write_text("CREATE TABLE IF NOT EXISTS rides ();", encoding="utf-8")
        return tmp_path

    @pytest.mark.asyncio
    async def test_lock_taken_before_schema(self, mock_db, mock_conn, schema_root: Path) -> None:
        with patch("src.config.loader.get_project_root", return_value=schema_root):
            await database._init_schema(mock_db)

        calls = [c.args for c in mock_conn.execute.await_args_list]
        assert calls == [
            ("SELECT pg_advisory_xact_lock($1)", SCHEMA_LOCK_ID),
            ("CREATE TABLE IF NOT EXISTS rides ();",),
        ]

    @pytest.mark.asyncio
    async def test_missing_schema_file(self, mock_db, mock_conn, tmp_path: Path) -> None:
        with patch("src.config.loader.get_project_root", return_value=tmp_path), \
                patch("src.infra.database.log_error", new_callable=AsyncMock) as log_error:
            await database._init_schema(mock_db)

        log_error.assert_awaited_once()
        mock_conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_objects_tolerated(self, mock_db, mock_conn, schema_root: Path) -> None:
        mock_conn.execute.side_effect = [None, asyncpg.DuplicateObjectError("type exists")]

        with patch("src.config.loader.get_project_root", return_value=schema_root), \
                patch("src.infra.database.log_warning", new_callable=AsyncMock) as log_warning:
            await database._init_schema(mock_db)

        log_warning.assert_awaited_once()
