import os

# must be set before app.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENV", "dev")

import pytest
from sqlalchemy.orm import sessionmaker

from app.auth.deps import CallerContext
from app.core.errors import ProcessNotFoundError
from app.db.init_db import init_db
from app.db.session import build_engine


class FakeDispatcher:
    """Records every delivery instead of talking to Temporal."""

    def __init__(self, not_running=()):
        self.calls = []
        self.not_running = set(not_running)

    async def signal(self, process_id, signal_name, payload, timeout=None):
        self.calls.append(("signal", process_id, signal_name, payload))
        if process_id in self.not_running:
            raise ProcessNotFoundError(process_id)

    async def signal_or_start(self, proposed_process_id, process_type, signal_name, payload, start_options, timeout=None):
        self.calls.append(("signal_or_start", proposed_process_id, process_type, signal_name, payload, start_options))


@pytest.fixture
def engine():
    eng = build_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def ctx():
    return CallerContext(tenant_id="acme", user_id="u1", authorization="Bearer caller-token")
