from __future__ import annotations
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from auditsource.errors import ConnectivityError


def make_engine(url: str) -> Engine:
    return create_engine(url, pool_pre_ping=True)


def connect(engine: Engine) -> Connection:
    try:
        return engine.connect()
    except SQLAlchemyError as e:
        raise ConnectivityError(f"cannot connect to {engine.url!r}: {e}") from e
