from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple
from sqlalchemy import inspect
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, NoSuchTableError, SQLAlchemyError
from sqlalchemy.types import Boolean, DateTime, Integer, Numeric, TypeEngine
from auditsource.config import CURSOR_TYPE_NAMES
from auditsource.errors import ConfigurationError, ConnectivityError, SchemaError

logger = logging.getLogger(__name__)


class SqlType(Enum):
    INTEGER = "integer"
    BOOLEAN = "boolean"
    FLOATING_POINT = "floating_point"
    TIMESTAMP = "timestamp"
    TEXT = "text"


@dataclass(frozen=True)
class ColumnDescriptor:
    name: str
    sql_type: SqlType
    ordinal_position: int


def sql_type_for(coltype: TypeEngine) -> SqlType:
    # order matters, Float is a Numeric and TIMESTAMP is a DateTime
    if isinstance(coltype, Boolean):
        return SqlType.BOOLEAN
    if isinstance(coltype, Integer):
        return SqlType.INTEGER
    if isinstance(coltype, Numeric):
        return SqlType.FLOATING_POINT
    if isinstance(coltype, DateTime):
        return SqlType.TIMESTAMP
    return SqlType.TEXT


def parse_sql_type(name: str) -> SqlType:
    key = CURSOR_TYPE_NAMES.get(name.strip().lower())
    if key is None:
        raise ConfigurationError(f"unknown cursor column type {name!r}")
    return SqlType[key]


def _probe_query(table_name: Optional[str], query: Optional[str]) -> str:
    if query:
        return f"SELECT * FROM ({query}) probe WHERE 1 = 0"
    return f"SELECT * FROM {table_name} WHERE 1 = 0"


def _reflected_types(conn: Connection, table_name: str) -> Dict[str, SqlType]:
    try:
        cols = inspect(conn).get_columns(table_name)
    except NoSuchTableError as e:
        raise SchemaError(f"table {table_name} does not exist") from e
    return {c["name"].lower(): sql_type_for(c["type"]) for c in cols}


def resolve_columns(conn: Connection, table_name: Optional[str], cursor_column: str,
                    query: Optional[str] = None) -> Tuple[List[ColumnDescriptor], int]:
    """Describe the columns a poll returns and locate the cursor column.

    Names and order come from a zero-row run of whatever a poll executes: the
    explicit query when one is configured, otherwise ``SELECT *`` on the table.
    Types are looked up by name in the reflected table; with no table, or for a
    column the table does not have, the column is treated as text.

    Returns the descriptors and the 1-based ordinal of the cursor column.
    """
    probe = _probe_query(table_name, query)
    try:
        result = conn.exec_driver_sql(probe)
        names = list(result.keys())
        result.close()
        types = _reflected_types(conn, table_name) if table_name else {}
    except DBAPIError as e:
        if e.connection_invalidated:
            raise ConnectivityError(str(e)) from e
        raise SchemaError(f"cannot describe columns with {probe!r}: {e}") from e
    except SQLAlchemyError as e:
        raise SchemaError(f"cannot describe columns with {probe!r}: {e}") from e
    finally:
        if conn.in_transaction():
            conn.rollback()

    columns = [
        ColumnDescriptor(name=name, sql_type=types.get(name.lower(), SqlType.TEXT), ordinal_position=i)
        for i, name in enumerate(names, start=1)
    ]

    wanted = cursor_column.lower()
    for col in columns:
        if col.name.lower() == wanted:
            logger.info("resolved %d columns, cursor column %s at position %d (%s)",
                        len(columns), col.name, col.ordinal_position, col.sql_type.value)
            return columns, col.ordinal_position

    where = "the configured query" if query else table_name
    raise SchemaError(f"column to commit was {cursor_column} but in {where} there is no column with this name")
