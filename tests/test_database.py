"""
Tests for database helpers and configuration errors.
"""

import pytest

from ledger_engine.core.config import DatabaseConfig
from ledger_engine.core.database import DatabaseManager
from ledger_engine.core.exceptions import ConfigurationError


def test_database_url_gets_async_driver():
    assert DatabaseConfig.get_database_url("postgresql://u:p@db/ledger") == "postgresql+asyncpg://u:p@db/ledger"
    assert DatabaseConfig.get_database_url("sqlite:///ledger.db") == "sqlite+aiosqlite:///ledger.db"
    assert DatabaseConfig.get_database_url(
        "postgresql+asyncpg://u:p@db/ledger", async_driver=False
    ) == "postgresql://u:p@db/ledger"


def test_unsupported_database_is_a_configuration_error():
    with pytest.raises(ConfigurationError) as exc_info:
        DatabaseConfig.get_database_url("mysql://u:p@db/ledger")
    assert exc_info.value.details == {"scheme": "mysql"}


async def test_health_check(db_engine):
    assert await DatabaseManager(db_engine).health_check() is True


async def test_create_tables_is_repeatable(db_engine):
    await DatabaseManager(db_engine).create_tables()
    assert await DatabaseManager(db_engine).health_check() is True
