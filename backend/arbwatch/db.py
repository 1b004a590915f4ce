from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def _sqlite_path(url: str) -> str:
    if url.startswith("sqlite:///"):
        return url[len("sqlite:///"):]
    return ""


def make_engine(url: str):
    """
    Build an engine for DATABASE_URL. In-memory sqlite shares one connection
    so every session sees the same tables.
    """
    if not url.startswith("sqlite"):
        return create_engine(url)

    path = _sqlite_path(url)
    if path in ("", ":memory:"):
        return create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, connect_args={"check_same_thread": False})


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine) -> None:
    path = _sqlite_path(str(engine.url))
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    # models register themselves on Base
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
