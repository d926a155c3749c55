from __future__ import annotations

from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from invoicedesk.core.settings import settings


def engine_options(url: str) -> Dict[str, Any]:
    """Pool and connect options for ``url``; SQLite gets no pool sizing."""
    if url.startswith("sqlite"):
        return {
            "pool_pre_ping": True,
            "connect_args": {"check_same_thread": False, "timeout": 15},
        }
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_recycle": settings.db_pool_recycle,
        "connect_args": {
            "connect_timeout": 5,
            "options": f"-c statement_timeout={settings.db_statement_timeout_ms}",
        },
    }


def make_session_factory(bind: Engine) -> sessionmaker:
    # Services read row attributes after commit when writing audit entries.
    return sessionmaker(bind=bind, class_=Session, autoflush=False, expire_on_commit=False)


engine = create_engine(settings.database_url, **engine_options(settings.database_url))
SessionLocal = make_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
