"""
Database configuration and session management
"""
from contextlib import contextmanager
import json
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

logger = logging.getLogger(__name__)

def _safe_json_deserializer(value):
    # Tolerate legacy non-JSON values so SELECTs don't crash
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return value

def make_engine(url: str = DATABASE_URL):
    # SQLite needs special connect args; Postgres does not
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    kwargs = {"future": True, "json_deserializer": _safe_json_deserializer, "connect_args": connect_args}
    if not url.startswith("sqlite"):
        kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=20)
    return create_engine(url, **kwargs)

# Create engine
engine = make_engine()

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

# Create base class for models
Base = declarative_base()

def init_db(bind=None):
    """Initialize database tables"""
    # Make sure all models are imported so Base.metadata is populated
    import integrations_api.models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created successfully")

@contextmanager
def session_scope(factory=None):
    s = (factory or SessionLocal)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
