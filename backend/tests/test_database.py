"""
Textbook API — Connection Pool Manager Tests
=============================================

What we test:
    ✅ get_pool() builds exactly one engine under concurrent first calls
    ✅ Engine is created with the serverless pool bounds
    ✅ Missing DATABASE_URL raises ConfigurationError
    ✅ query() returns rows and wraps driver errors in DatabaseError
    ✅ Error context counts bound parameters of Core statements too
    ✅ The connection is released after a failing statement
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from sqlalchemy import insert

from textbook_api.database import Database
from textbook_api.exceptions import ConfigurationError, DatabaseError
from textbook_api.models.user import User

from conftest import build_settings


class TestGetPool:

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_create_one_engine(self):
        """Twenty simultaneous first uses (threads and coroutines) share one engine."""
        db = Database(build_settings())

        with patch("textbook_api.database.create_async_engine") as mock_create, \
             patch("textbook_api.database.event"):
            mock_create.return_value = MagicMock()

            from_threads = [asyncio.to_thread(db.get_pool) for _ in range(10)]
            engines = await asyncio.gather(*from_threads)
            engines += [db.get_pool() for _ in range(10)]

        assert mock_create.call_count == 1
        assert all(engine is engines[0] for engine in engines)
        assert db.is_initialized

    def test_engine_uses_single_connection_pool(self):
        config = build_settings(database_url="postgresql://u:p@db.example.com/app?sslmode=require")
        db = Database(config)

        with patch("textbook_api.database.create_async_engine") as mock_create, \
             patch("textbook_api.database.event"):
            db.get_pool()

        url = mock_create.call_args.args[0]
        kwargs = mock_create.call_args.kwargs
        assert url == "postgresql+asyncpg://u:p@db.example.com/app"
        assert kwargs["pool_size"] == 1
        assert kwargs["max_overflow"] == 0
        assert kwargs["pool_timeout"] == 5.0
        assert kwargs["pool_recycle"] == 30
        assert kwargs["pool_pre_ping"] is True
        assert kwargs["connect_args"] == {"timeout": 5.0, "ssl": "require"}

    def test_missing_url_raises_configuration_error(self):
        db = Database(build_settings(database_url=""))

        with pytest.raises(ConfigurationError):
            db.get_pool()
        assert not db.is_initialized


class TestQuery:

    @pytest.mark.asyncio
    async def test_returns_rows_as_mappings(self, database):
        rows = await database.query("SELECT :value AS answer", {"value": 42})

        assert rows[0]["answer"] == 42

    @pytest.mark.asyncio
    async def test_statement_without_rows_returns_empty_list(self, database):
        rows = await database.query(
            "INSERT INTO users (id, email) VALUES (:id, :email)",
            {"id": "u1", "email": "a@example.com"},
        )

        assert rows == []

    @pytest.mark.asyncio
    async def test_failure_raises_database_error_without_param_values(self, database):
        with pytest.raises(DatabaseError) as exc_info:
            await database.query(
                "SELECT * FROM no_such_table WHERE secret = :secret",
                {"secret": "hunter2"},
            )

        context = exc_info.value.context
        assert context["param_count"] == 1
        assert context["query"].startswith("SELECT * FROM no_such_table")
        assert "hunter2" not in str(context)
        assert "hunter2" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_failure_counts_bound_parameters_of_core_statements(self, database):
        statement = insert(User.__table__).values(id="u1", email="secret@example.com")
        await database.query(statement)

        with pytest.raises(DatabaseError) as exc_info:
            await database.query(statement)

        context = exc_info.value.context
        assert context["error_type"] == "IntegrityError"
        assert context["param_count"] >= 2
        assert "secret@example.com" not in str(context)

    @pytest.mark.asyncio
    async def test_connection_released_after_failure(self, tmp_path):
        """With a single pooled connection, a leak would make the next query time out."""
        config = build_settings(
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'leak.db'}",
            db_pool_timeout=1.0,
        )
        db = Database(config)
        try:
            for _ in range(3):
                with pytest.raises(DatabaseError):
                    await db.query("SELECT * FROM missing")

            rows = await db.query("SELECT 1 AS ok")
            assert rows[0]["ok"] == 1
            assert db.get_pool().pool.checkedout() == 0
        finally:
            await db.dispose()

    @pytest.mark.asyncio
    async def test_dispose_allows_fresh_engine(self, database):
        first = database.get_pool()
        await database.dispose()

        assert not database.is_initialized
        assert database.get_pool() is not first
