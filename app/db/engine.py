import logging
import time
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

logger = logging.getLogger(__name__)


def _is_postgres_url(database_url: str) -> bool:
    return database_url.startswith("postgresql") or database_url.startswith("postgres")


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    db_url_obj = make_url(database_url)
    connect_args: dict = {}
    engine_kwargs: dict = {"echo": echo}

    if db_url_obj.get_backend_name() == "sqlite":
        # The store is shared between the event loop and background task threads.
        connect_args["check_same_thread"] = False
        if db_url_obj.database in (None, "", ":memory:"):
            engine_kwargs["poolclass"] = StaticPool
    elif _is_postgres_url(database_url):
        engine_kwargs["pool_pre_ping"] = True

    return create_engine(database_url, connect_args=connect_args, **engine_kwargs)


def init_db(engine: Engine) -> None:
    from app.models import equipment_request  # noqa: F401

    SQLModel.metadata.create_all(engine)


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    start_time = time.time()
    with Session(engine, expire_on_commit=False) as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise

    duration = time.time() - start_time
    if duration > 0.2:
        logger.warning(f"Slow DB Session: {duration:.4f}s")
