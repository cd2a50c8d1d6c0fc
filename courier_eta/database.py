# courier_eta/database.py
from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from courier_eta.config import Config

# Use a single, shared Base for all models
Base = declarative_base()


def build_engine(
    database_url: str = Config.DATABASE_URL,
    echo: bool = Config.SQL_ECHO,
    pool_size: int = Config.DB_POOL_SIZE,
    max_overflow: int = Config.DB_MAX_OVERFLOW,
) -> Engine:
    engine_kwargs: Dict[str, Any] = {
        "echo": echo,
        "future": True,
        "pool_pre_ping": True,
    }

    if not database_url.startswith("sqlite"):
        engine_kwargs["pool_size"] = pool_size
        engine_kwargs["max_overflow"] = max_overflow
    elif ":memory:" in database_url:
        # One shared connection so every session (and the poll thread) sees the same schema
        engine_kwargs["poolclass"] = StaticPool
        engine_kwargs["connect_args"] = {"check_same_thread": False}

    return create_engine(database_url, **engine_kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


def init_database(engine: Engine) -> None:
    """Create the tables this service owns (the orders table in dev/test)."""
    # Imported for its side effect of registering the models on Base.metadata
    from courier_eta import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
