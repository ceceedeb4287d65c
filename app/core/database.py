from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.config import settings


def _engine_options(url: str) -> dict:
    """Build engine options for the configured backend."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}

    # Bound connects and statements so a hung database fails the request
    return {
        "pool_pre_ping": True,
        "pool_timeout": settings.DB_POOL_TIMEOUT_SECONDS,
        "connect_args": {
            "connect_timeout": settings.DB_POOL_TIMEOUT_SECONDS,
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
        },
    }


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
