from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from iot_automations.config import settings


class Base(DeclarativeBase):
    pass


_engine = None


def get_engine():
    global _engine
    if _engine is None:
        _engine = create_engine(
            settings.database_url,
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
        )
    return _engine


SessionLocal = sessionmaker(autoflush=False, autocommit=False)


def _bind_session_factory() -> None:
    if SessionLocal.kw.get("bind") is None:
        SessionLocal.configure(bind=get_engine())


def open_session():
    """Return a new session bound to the configured engine."""
    _bind_session_factory()
    return SessionLocal()


def get_db():
    """Centralized database session dependency for FastAPI.

    Yields a database session and ensures it is closed after the request.

    Example:
        @router.get("/items")
        def get_items(db: Session = Depends(get_db)):
            ...
    """
    db = open_session()
    try:
        yield db
    finally:
        db.close()
