"""Module-level engine and session_scope helpers."""

import pytest
from sqlalchemy import select

from royalty_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from royalty_kernel.models.licensing import Creator


@pytest.fixture
def module_engine():
    engine = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield engine
    reset_engine()


class TestModuleEngine:

    def test_uninitialized(self):
        reset_engine()
        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session_factory()
        assert not is_postgres()

    def test_initialized(self, module_engine):
        assert get_engine() is module_engine
        assert not is_postgres()

    def test_session_scope_commits(self, module_engine):
        with session_scope() as session:
            session.add(Creator(display_name="Ada"))

        with session_scope() as session:
            assert session.scalars(select(Creator.display_name)).all() == ["Ada"]

    def test_session_scope_rolls_back(self, module_engine, captured_logs):
        with pytest.raises(ValueError):
            with session_scope() as session:
                session.add(Creator(display_name="Ada"))
                session.flush()
                raise ValueError("abort")

        with session_scope() as session:
            assert session.scalars(select(Creator)).all() == []
        assert "transaction_rolled_back" in [r["message"] for r in captured_logs()]
