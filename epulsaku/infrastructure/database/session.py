"""Database engine, session factory and the request-scoped session dependency"""

from typing import Iterator
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from epulsaku.config import settings


def build_engine(database_url: str) -> Engine:
    """SQLite gets a thread-shareable connection; server databases get a recycled pool"""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})

    # Pool of up to 20 connections, recycled hourly so idle ones never go stale
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """Request-scoped session for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """Factory for background work that outlives a request (reconciliation ticks)"""
    return SessionLocal
