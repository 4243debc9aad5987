# File: database/db.py
import logging
import os
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

# One engine per store file. The store is a single SQLite file shared by the
# background worker and the interactive thread.
_engines: Dict[str, Engine] = {}
_session_factories: Dict[str, sessionmaker] = {}
_lock = threading.Lock()


class StorageUnavailableError(RuntimeError):
    """The publication store cannot be opened or its schema cannot be created."""


def get_engine(path: str) -> Engine:
    key = os.path.abspath(path)

    engine = _engines.get(key)
    if engine is not None:
        return engine

    with _lock:
        if key not in _engines:
            directory = os.path.dirname(key)
            try:
                if directory:
                    os.makedirs(directory, exist_ok=True)
            except OSError as e:
                raise StorageUnavailableError(f"Cannot create store directory {directory}: {e}") from e

            _engines[key] = create_engine(
                f"sqlite:///{key}",
                echo=False,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
            _session_factories[key] = sessionmaker(
                autocommit=False, autoflush=False, bind=_engines[key]
            )
            logger.debug(f"Opened store engine for {key}")
        return _engines[key]


@contextmanager
def open_session(path: str) -> Iterator[Session]:
    """
    Short-lived session scoped to one logical store operation.
    Callers commit explicitly; anything left uncommitted is rolled back on exit.
    """
    get_engine(path)
    factory = _session_factories[os.path.abspath(path)]
    db = factory()
    try:
        yield db
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(path: str) -> None:
    # Register every model on Base.metadata before creating tables
    from database.models import (  # noqa: F401
        analysis_model,
        publication_model,
        query_model,
        scope_model,
        term_model,
    )

    engine = get_engine(path)
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        raise StorageUnavailableError(f"Cannot create schema in {path}: {e}") from e


def dispose_engine(path: str) -> None:
    key = os.path.abspath(path)
    with _lock:
        engine = _engines.pop(key, None)
        _session_factories.pop(key, None)
    if engine is not None:
        engine.dispose()
