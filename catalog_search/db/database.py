"""Database engine and session factory."""

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import sessionmaker

from catalog_search.config import Settings
from catalog_search.db.models import Base


def create_sync_engine(settings: Settings) -> Engine:
    return create_engine(settings.postgres_url_sync, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db_sync(engine: Engine) -> None:
    """Create tables if they don't exist (development convenience)."""
    Base.metadata.create_all(engine)
