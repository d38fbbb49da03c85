"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
Integration tests run against an in-memory SQLite database created per test.
"""
import os
import sys
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Keep tests off the real database and log file.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FILE", "")

from sqlalchemy.orm import sessionmaker  # noqa: E402

from creditflow.db.database import create_db_engine, init_db, session_scope  # noqa: E402
from creditflow.db.models import Definition, Domain, Exercise, NodePrerequisite  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory SQLite)")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """Fixed review time used across a test."""
    return datetime(2024, 3, 1, 9, 0, 0)


@pytest.fixture
def engine():
    """Fresh in-memory database with all tables."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    """A session for tests that drive the repository directly."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def seeded(session_factory):
    """
    One domain with a small prerequisite chain.

    Definitions A <- B <- C (each edge weight 0.5: B depends on A, C on B)
    and exercise E depending on C with weight 1.0.
    """
    with session_scope(session_factory) as session:
        domain = Domain(name="Linear Algebra", description="Vectors and matrices")
        session.add(domain)
        session.flush()

        a = Definition(code="D1", name="Vector", domain_id=domain.id)
        b = Definition(code="D2", name="Linear combination", domain_id=domain.id)
        c = Definition(code="D3", name="Span", domain_id=domain.id)
        e = Exercise(code="E1", name="Is the vector in the span?", domain_id=domain.id, difficulty=2)
        session.add_all([a, b, c, e])
        session.flush()

        session.add_all(
            [
                NodePrerequisite(
                    node_id=b.id, node_type="definition",
                    prerequisite_id=a.id, prerequisite_type="definition", weight=0.5,
                ),
                NodePrerequisite(
                    node_id=c.id, node_type="definition",
                    prerequisite_id=b.id, prerequisite_type="definition", weight=0.5,
                ),
                NodePrerequisite(
                    node_id=e.id, node_type="exercise",
                    prerequisite_id=c.id, prerequisite_type="definition", weight=1.0,
                ),
            ]
        )
        ids = SimpleNamespace(domain=domain.id, a=a.id, b=b.id, c=c.id, e=e.id)
    return ids
