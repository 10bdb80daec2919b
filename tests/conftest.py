"""
Shared fixtures: a file-backed SQLite database per test, a frozen clock and
a notifier that records what it was asked to send.
"""

import pytest

from ledger_engine.core.config import Settings
from ledger_engine.core.database import DatabaseManager, build_engine, build_session_maker
from ledger_engine.services.engine import LedgerEngine
from tests.factories import NOW, FrozenClock, RecordingNotifier


@pytest.fixture
def config(tmp_path):
    return Settings(
        _env_file=None,
        environment="test",
        database_url=f"sqlite:///{tmp_path / 'ledger.db'}",
        log_format="console",
    )


@pytest.fixture
async def db_engine(config):
    engine = build_engine(config.database_url)
    await DatabaseManager(engine).create_tables()
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_maker(db_engine)


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ledger_engine(session_factory, clock, notifier, config):
    return LedgerEngine(session_factory, clock=clock, notifier=notifier, config=config)
