from __future__ import annotations

from collections.abc import Generator, Iterator
from contextlib import contextmanager
from enum import StrEnum
from functools import lru_cache

from sqlalchemy import Engine, Enum, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from crmguard.core.config import get_settings


class Base(DeclarativeBase):
    pass


def enum_type(enum_cls: type[StrEnum], name: str) -> Enum:
    """Store a StrEnum by value and reject unknown strings before they reach the database."""

    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )


@lru_cache
def get_engine() -> Engine:
    return create_engine(get_settings().database_url, pool_pre_ping=True)


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """Commit the enclosing unit of work, or roll every statement in it back on any error."""

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
