"""Engine/session lifecycle and optimistic version checks."""
from __future__ import annotations

import pytest
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from circulation.db import app_session
from circulation.db.engine import get_engine, init_engine_once, reset_for_tests
from circulation.db.models import Copy, CopyStatus, Member
from circulation.db.repositories import copies_repo, members_repo


@pytest.fixture(autouse=True)
def in_memory_db(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LENDING_DB_PATH", ":memory:")
    init_engine_once()
    yield
    reset_for_tests(drop=True)


def test_init_is_idempotent():
    engine = get_engine()
    init_engine_once()
    assert get_engine() is engine


def test_app_session_rolls_back_on_error():
    with pytest.raises(RuntimeError):
        with app_session() as session:
            members_repo.create_member(session, "Ghost")
            raise RuntimeError("boom")
    with app_session() as session:
        assert session.query(Member).count() == 0


def test_version_column_increments_on_update():
    with app_session() as session:
        title = copies_repo.create_title(session, "Versioned")
        copy_id = copies_repo.create_copy(session, title.id).id
    with app_session() as session:
        copy = session.get(Copy, copy_id)
        assert copy.version == 1
        copy.status = CopyStatus.DAMAGED
    with app_session() as session:
        assert session.get(Copy, copy_id).version == 2


def test_stale_writer_is_rejected():
    with app_session() as session:
        title = copies_repo.create_title(session, "Contended")
        copy_id = copies_repo.create_copy(session, title.id).id

    table = Copy.__table__
    with pytest.raises(StaleDataError):
        with app_session() as session:
            copy = session.get(Copy, copy_id)
            # another writer bumps the row behind the ORM's back
            session.execute(update(table).where(table.c.id == copy_id).values(version=table.c.version + 1))
            copy.status = CopyStatus.LOST
            session.flush()

    with app_session() as session:
        assert session.get(Copy, copy_id).status == CopyStatus.AVAILABLE
