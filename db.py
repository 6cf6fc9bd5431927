from collections.abc import Generator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Session, create_engine

from config import settings

DATABASE_URL = settings.DATABASE_URL

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # Route handlers run in the worker thread pool
    connect_args = {"check_same_thread": False}

engine = create_engine(
    DATABASE_URL,
    echo=settings.SQL_ECHO,
    connect_args=connect_args,
)


def create_db_and_tables() -> None:
    """Create all tables in the database if they don't exist."""
    import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_session)]


def get_engine() -> Engine:
    """Engine for work that outlives a single request, such as live streams."""
    return engine


EngineDep = Annotated[Engine, Depends(get_engine)]
