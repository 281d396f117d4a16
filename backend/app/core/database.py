"""
Database configuration and session management.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from app.core.config import settings

_database_url = str(getattr(settings, "DATABASE_URL", ""))

# Reduce worst-case startup delays when the DB host is unreachable.
# (psycopg2 honors connect_timeout in seconds)
_connect_args = {}
_engine_kwargs = {}
if _database_url.startswith(("postgresql://", "postgres://")):
    _connect_args = {"connect_timeout": 5}
    _engine_kwargs = {
        "poolclass": QueuePool,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
    }
elif _database_url.startswith("sqlite"):
    _connect_args = {"check_same_thread": False}

# Create engine with connection pooling
engine = create_engine(
    _database_url,
    connect_args=_connect_args,
    pool_pre_ping=True,  # Verify connections before use
    **_engine_kwargs,
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def conflict_insert(db, model):
    """Dialect-specific INSERT supporting ``on_conflict_do_*`` (Postgres in prod, SQLite in tests)."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"ON CONFLICT inserts are not supported on {dialect}")
    return insert(model)


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
