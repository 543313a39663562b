"""
Shared test fixtures: a throwaway SQLite database per test
"""

import pytest
from sqlalchemy.orm import sessionmaker

from guestlist.core.db import Base, build_engine
from guestlist.models import Guest
from guestlist.services.repositories import SqlGuestStore
from guestlist.utils.security import rate_limiter

@pytest.fixture
def engine(tmp_path):
    """File-backed so several threads can open their own connections"""
    engine = build_engine(f"sqlite:///{tmp_path / 'test_guestlist.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture
def db_session(session_factory):
    """Create test database session"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def store(db_session):
    return SqlGuestStore(db_session)

@pytest.fixture
def add_guest(db_session):
    """Insert a guest row; keyword arguments override the defaults"""
    def _add(guest_id: str, **fields) -> Guest:
        values = {
            "first_name": "Guest",
            "last_name": guest_id,
            "ticket_type": "General",
            "plus_ones_allowed": 0,
            "plus_ones_checked_in": 0,
            "status": "not_checked_in",
        }
        values.update(fields)
        guest = Guest(id=guest_id, **values)
        db_session.add(guest)
        db_session.commit()
        return guest
    return _add

@pytest.fixture(autouse=True)
def clear_rate_limiter():
    rate_limiter.clear()
    yield
    rate_limiter.clear()
