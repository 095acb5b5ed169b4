from __future__ import annotations
import logging
from enum import Enum
from typing import List, Optional
from sqlalchemy.engine import Connection, CursorResult, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from auditsource.checkpoint import FileCheckpointStore
from auditsource.config import Settings
from auditsource.db import connect, make_engine
from auditsource.errors import ConnectivityError, EventReadError, RowConversionError
from auditsource.mapper import map_row
from auditsource.models import AuditEvent
from auditsource.query import build_query, render_query_template
from auditsource.schema import ColumnDescriptor, SqlType, parse_sql_type, resolve_columns
from auditsource.serializers import EventSerializer, JsonEventSerializer, build_serializer

logger = logging.getLogger(__name__)


class ReaderState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    CLOSED = "closed"


class ReliableEventReader:
    """Pull-based, resumable reader over an append-only table.

    Rows come back in ascending cursor column order. The cursor value of the
    last row handed out is kept as ``pending_value`` and only becomes the
    durable checkpoint on ``commit()``, so anything read but not committed is
    read again after a restart. One uncommitted batch at a time, one thread.
    """

    def __init__(self, engine: Engine, checkpoint: FileCheckpointStore, cursor_column: str,
                 table_name: Optional[str] = None, query: Optional[str] = None,
                 cursor_column_type: Optional[SqlType] = None,
                 serializer: Optional[EventSerializer] = None):
        self.engine = engine
        self.checkpoint = checkpoint
        self.table_name = table_name
        self.configured_query = query
        self.serializer = serializer or JsonEventSerializer()

        self._connection: Optional[Connection] = None
        self._result: Optional[CursorResult] = None
        self._state = ReaderState.IDLE

        self._pending_value: Optional[str] = None
        self.columns: List[ColumnDescriptor] = []
        try:
            conn = self._connect()
            rendered = render_query_template(query, None, cursor_column_type or SqlType.TEXT) if query else None
            self.columns, self.cursor_ordinal = resolve_columns(conn, table_name, cursor_column, rendered)
            self._committed_value = checkpoint.load()
        except Exception:
            self.close()
            raise

        cursor_col = self.columns[self.cursor_ordinal - 1]
        self.cursor_column = cursor_col.name
        self.cursor_type = cursor_column_type or cursor_col.sql_type

    @property
    def state(self) -> ReaderState:
        return self._state

    @property
    def committed_value(self) -> Optional[str]:
        return self._committed_value

    @property
    def pending_value(self) -> Optional[str]:
        return self._pending_value

    def current_query(self) -> str:
        explicit = None
        if self.configured_query is not None:
            explicit = render_query_template(self.configured_query, self._committed_value, self.cursor_type)
        return build_query(explicit, self.table_name, self.cursor_column, self.cursor_type, self._committed_value)

    def read_event(self) -> Optional[AuditEvent]:
        if self._state is ReaderState.CLOSED:
            raise EventReadError("reader is closed")
        if self._state is ReaderState.IDLE:
            self._run_query()

        if self._result is None:
            raise EventReadError("no open result to read from")
        try:
            row = self._result.fetchone()
        except SQLAlchemyError as e:
            self._discard_result()
            raise self._translate(e) from e

        if row is None:
            self._finish_result()
            return None

        try:
            event, value = map_row(row, self.columns, self.cursor_ordinal)
        except RowConversionError:
            # never step over a row that could not be converted
            self._finish_result()
            raise
        if value is not None:
            self._pending_value = value
        return self.serializer.process(event)

    def read_events(self, max_count: int) -> List[AuditEvent]:
        events: List[AuditEvent] = []
        for _ in range(max_count):
            event = self.read_event()
            if event is None:
                break
            events.append(event)
        logger.info("number of events returned: %d", len(events))
        return events

    def commit(self) -> None:
        if self._pending_value is None:
            return
        self.checkpoint.save(self._pending_value)
        self._committed_value = self._pending_value
        self._pending_value = None
        logger.debug("committed value %s", self._committed_value)

    def rewind(self) -> None:
        """Forget everything read since the last commit.

        The open result is dropped, so the next ``read_event()`` queries again
        from the committed value.
        """
        self._pending_value = None
        if self._state is not ReaderState.STREAMING:
            return
        try:
            self._finish_result()
        except (ConnectivityError, EventReadError):
            logger.debug("error while dropping open result", exc_info=True)
        logger.info("rewound to committed value %s", self._committed_value)

    def close(self) -> None:
        if self._state is ReaderState.CLOSED:
            return
        self._state = ReaderState.CLOSED
        try:
            if self._result is not None:
                self._result.close()
            if self._connection is not None:
                self._connection.close()
        except Exception:
            logger.debug("error while closing reader", exc_info=True)
        finally:
            self._result = None
            self._connection = None

    def _connect(self) -> Connection:
        conn = self._connection
        if conn is None or conn.closed or conn.invalidated:
            if conn is not None:
                conn.close()
            conn = connect(self.engine)
            self._connection = conn
        return conn

    def _run_query(self) -> None:
        conn = self._connect()
        query = self.current_query()
        if self.engine.dialect.supports_server_side_cursors:
            conn = conn.execution_options(stream_results=True)
        try:
            self._result = conn.exec_driver_sql(query)
        except SQLAlchemyError as e:
            self._discard_result()
            raise self._translate(e) from e
        self._state = ReaderState.STREAMING
        logger.info("executing query: %s", query)

    def _finish_result(self) -> None:
        # ends the read transaction so the next poll sees newly appended rows
        try:
            if self._result is not None:
                self._result.close()
            if self._connection is not None and self._connection.in_transaction():
                self._connection.rollback()
        except SQLAlchemyError as e:
            self._discard_result()
            raise self._translate(e) from e
        finally:
            self._result = None
            if self._state is ReaderState.STREAMING:
                self._state = ReaderState.IDLE

    def _discard_result(self) -> None:
        self._result = None
        self._state = ReaderState.IDLE
        conn, self._connection = self._connection, None
        if conn is not None:
            try:
                conn.close()
            except SQLAlchemyError:
                logger.debug("error while dropping broken connection", exc_info=True)

    @staticmethod
    def _translate(e: SQLAlchemyError) -> Exception:
        if isinstance(e, DBAPIError) and e.connection_invalidated:
            return ConnectivityError(str(e))
        return EventReadError(str(e))


def build_reader(settings: Settings, engine: Optional[Engine] = None) -> ReliableEventReader:
    """Assemble a reader from settings. Config and schema faults raise here."""
    cursor_type = parse_sql_type(settings.cursor_column_type) if settings.cursor_column_type else None
    serializer = build_serializer(settings.serializer)
    return ReliableEventReader(
        engine=engine or make_engine(settings.database_url),
        checkpoint=FileCheckpointStore(settings.checkpoint_path),
        cursor_column=settings.cursor_column,
        table_name=settings.table_name,
        query=settings.query,
        cursor_column_type=cursor_type,
        serializer=serializer,
    )
