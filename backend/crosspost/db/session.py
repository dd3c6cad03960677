"""Database session management"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from crosspost.core.config import settings
from crosspost.models.base import Base

_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_recycle=3600,
    connect_args=_connect_args
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database (create all tables)"""
    import crosspost.models  # noqa: F401  registers models with Base.metadata
    Base.metadata.create_all(bind=engine)
