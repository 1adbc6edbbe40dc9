"""
Tests for the module-level engine registry and session_scope.
"""

import pytest
from sqlalchemy import func, select

from billing_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from billing_kernel.models.job import JobModel


@pytest.fixture
def registered_engine():
    engine = init_engine_from_url("sqlite://")
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


def _job_count() -> int:
    session = get_session()
    try:
        return session.execute(select(func.count()).select_from(JobModel)).scalar_one()
    finally:
        session.close()


class TestEngineRegistry:

    def test_sqlite_engine(self, registered_engine):
        assert get_engine() is registered_engine
        assert registered_engine.dialect.name == "sqlite"

    def test_uninitialized_access_fails(self):
        reset_engine()
        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session()


class TestSessionScope:

    def test_commits_on_success(self, registered_engine):
        with session_scope() as session:
            session.add(JobModel(name="Harbor View", status="active"))
        assert _job_count() == 1

    def test_rolls_back_on_error(self, registered_engine):
        with pytest.raises(ValueError):
            with session_scope() as session:
                session.add(JobModel(name="Harbor View", status="active"))
                session.flush()
                raise ValueError("abort")
        assert _job_count() == 0
