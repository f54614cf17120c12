"""
Database engine, session factory and the transaction scope the services share.

Defaults to SQLite for local dev, Postgres in production. Every queue, review
and audit write goes through transaction() so a state change and its audit
entry commit or roll back together.
"""
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from oversight.config import DATABASE_URL


class Base(DeclarativeBase):
    pass


# Some hosts inject postgres:// but SQLAlchemy 2.x requires postgresql://
url = DATABASE_URL.replace('postgres://', 'postgresql://', 1)

# Claims run from worker threads, so SQLite connections must cross threads
if url.startswith('sqlite'):
    engine = create_engine(url, connect_args={'check_same_thread': False})
else:
    engine = create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)

SessionLocal = sessionmaker(bind=engine)


def get_session():
    """Return a new DB session."""
    return SessionLocal()


@contextmanager
def transaction(session_factory=None):
    """Yield a session that is committed on success and rolled back on any error."""
    session = (session_factory or get_session)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def import_models():
    """Import every model module so Base.metadata knows about all tables."""
    import importlib
    for name in ('account', 'job', 'scheduled_post', 'attribution', 'alert', 'audit'):
        importlib.import_module(f'oversight.models.{name}')
