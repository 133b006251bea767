"""
Shared fixtures: an in-memory SQLite registry per test.
"""

import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from registry.database import init_db
from registry.models import MasterEntity


@pytest.fixture
def db():
    """Fresh database session backed by in-memory SQLite."""
    engine = create_engine("sqlite://", future=True)
    init_db(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def add_entity(db):
    """Factory that persists a MasterEntity from display values."""
    def _add(display_name: str, **kwargs) -> MasterEntity:
        entity = MasterEntity(display_name=display_name, **kwargs)
        db.add(entity)
        db.commit()
        db.refresh(entity)
        return entity

    return _add
