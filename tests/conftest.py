"""Shared pytest fixtures for database-backed service tests."""

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mcq_gateway.db.base import Base
from mcq_gateway.db.models import core  # noqa: F401

from tests.fakes import AsyncSessionWrapper, scope_for


@pytest.fixture
def sync_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest_asyncio.fixture
async def session(sync_session):
    yield AsyncSessionWrapper(sync_session)


@pytest.fixture
def session_scope(session):
    return scope_for(session)
