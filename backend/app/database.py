"""SQLite engine and session helpers for the account store."""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings

settings = get_settings()

# Sessions are opened from worker threads (asyncio.to_thread).
engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
    connect_args={"check_same_thread": False},
)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def init_db() -> None:
    """Create the ``accounts`` table on first start."""

    from app.models import Base

    settings.database_path.parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(engine)


@contextmanager
def get_db_session() -> Iterator[Session]:
    """One short-lived session per account lookup or write."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
