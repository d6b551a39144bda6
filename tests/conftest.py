import pytest

from sheetcms import db


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine for testing."""
    engine = db.init_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return db.get_session_factory(engine)
