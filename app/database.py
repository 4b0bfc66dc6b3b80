"""
SQLAlchemy engine for the credential table (SQLite in development, any
DATABASE_URL otherwise). Only the "database" token storage mode touches it.
"""
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from config import DATABASE_URL

# The token store is written from FastAPI's threadpool
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

Base = declarative_base()


@contextmanager
def session_scope(session_factory=SessionLocal):
    """Session that commits on success and rolls back if the block raises."""
    db: Session = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create the credential table if it does not exist yet."""
    import models  # noqa: F401  registers StoredCredential on Base

    Base.metadata.create_all(bind=engine)
