from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base, Session

from .config import DATABASE_URL


def _sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str, **kwargs):
    # SQLite (tests, local dev) rejects the pool sizing arguments.
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        sqlite_engine = create_engine(url, future=True, **kwargs)
        event.listen(sqlite_engine, "connect", _sqlite_foreign_keys)
        return sqlite_engine

    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_timeout=10,       # fail fast instead of hanging 30s
        pool_pre_ping=True,
        pool_recycle=1800,     # MySQL drops idle connections after wait_timeout
        future=True,
        **kwargs,
    )


engine = make_engine(DATABASE_URL)

# Classic session factory
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
)

# Base class for our ORM models
Base = declarative_base()


def get_db():
    """
    FastAPI dependency that yields a SQLAlchemy session and
    ensures it is closed after the request.
    """
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()
