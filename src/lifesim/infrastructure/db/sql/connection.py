import os
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


DATABASE_URL = "sqlite:///lifesim.db"


def configured_database_url() -> str:
    return os.getenv("LIFESIM_DATABASE_URL") or DATABASE_URL


def build_engine(database_url: str | None = None) -> Engine:
    url = database_url or configured_database_url()
    if url.startswith("sqlite"):
        # remote calls may run on a worker thread
        options = {"connect_args": {"check_same_thread": False}}
        if url in {"sqlite://", "sqlite:///:memory:"}:
            options["poolclass"] = StaticPool
        return create_engine(url, echo=False, future=True, **options)
    return create_engine(url, echo=False, future=True, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@lru_cache(maxsize=4)
def engine_for(database_url: str) -> Engine:
    return build_engine(database_url)
