from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from inventory_engine.config import settings
from inventory_engine.models import Base


def build_engine(url: str | None = None, **kwargs) -> Engine:
    url = url or settings.database_url_normalized
    if url.startswith('sqlite'):
        connect_args = kwargs.pop('connect_args', {})
        connect_args.setdefault('check_same_thread', False)
        kwargs['connect_args'] = connect_args
    return create_engine(url, echo=settings.database_echo, future=True, **kwargs)


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine()
SessionLocal = build_session_factory(engine)


def create_all(bind: Engine | None = None) -> None:
    Base.metadata.create_all(bind or engine)


def get_db() -> Iterator[Session]:
    with SessionLocal() as db:
        yield db
