"""
Pytest configuration and fixtures.
"""

from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from softmeta.models import Base
from softmeta.repositories import CrudRepository, SoftDeleteRepository
from tests.models import Part, Widget


# SQLite in-memory database for testing
SQLALCHEMY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    """Fresh in-memory database with all tables for each test."""
    engine = create_async_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(engine):
    factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session


@pytest.fixture
def current_user():
    """Principal returned by the accessor. Tests may change its id."""
    return SimpleNamespace(id=42, email="admin@test.com")


@pytest.fixture
def get_current_user(current_user):
    async def accessor():
        return current_user

    return accessor


@pytest.fixture
def widget_crud(db_session):
    return CrudRepository(Widget, db_session)


@pytest.fixture
def widget_repo(db_session, get_current_user):
    return SoftDeleteRepository.for_model(Widget, db_session, get_current_user)


@pytest.fixture
def part_repo(db_session, get_current_user):
    return SoftDeleteRepository.for_model(Part, db_session, get_current_user)


@pytest.fixture
async def seed_widgets(widget_repo):
    """Three active widgets: two of type 'a', one of type 'b'."""
    return await widget_repo.create_all([
        {"name": "bolt", "type": "a", "price": 10},
        {"name": "nut", "type": "a", "price": 20},
        {"name": "gear", "type": "b", "price": 30},
    ])
