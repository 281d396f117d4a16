from __future__ import annotations

import os

# Keep module-level engine creation off the production default.
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models import models  # noqa: F401  (registers tables on Base.metadata)
from app.models.models import BlogPost, User


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def post(db):
    row = BlogPost(id=1, title="Hello analytics", slug="hello-analytics", status="published")
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def user(db):
    row = User(id="11111111-1111-4111-8111-111111111111", email="reader@example.test")
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def fixed_now():
    return datetime(2026, 3, 14, 12, 0, 0, tzinfo=timezone.utc)
