from __future__ import annotations
import logging
import time
from enum import Enum
from typing import Callable, Optional
from sqlalchemy.engine import Engine
from auditsource.config import DedupFields, Settings
from auditsource.dedup import DropDuplicatedEventsFilter
from auditsource.errors import ConfigurationError, EventDeliveryError
from auditsource.publisher import EventChannel
from auditsource.reader import ReliableEventReader, build_reader

logger = logging.getLogger(__name__)


class Status(str, Enum):
    READY = "ready"
    BACKOFF = "backoff"


class AuditSource:
    """One read -> deliver -> commit cycle per ``process()`` call.

    A cycle that finishes early sleeps out the rest of
    ``minimum_cycle_interval``; a slow one is not compensated later. Failures
    are not retried here, the caller decides when to call ``process()`` again;
    the reader is rewound so that call starts over from the committed value.
    """

    backoff_sleep_increment = 0
    max_backoff_sleep_interval = 0

    def __init__(self, reader: ReliableEventReader, channel: EventChannel, batch_size: int = 100,
                 minimum_cycle_interval: float = 10.0,
                 dedup_filter: Optional[DropDuplicatedEventsFilter] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.reader = reader
        self.channel = channel
        self.batch_size = batch_size
        self.minimum_cycle_interval = minimum_cycle_interval
        self.dedup_filter = dedup_filter
        if dedup_filter is not None and dedup_filter.fields is DedupFields.HEADERS \
                and not getattr(reader.serializer, "headers", True):
            raise ConfigurationError("dedup on headers only needs a serializer that sets headers")
        self.status: Optional[Status] = None
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def configure(cls, settings: Settings, channel: EventChannel, engine: Optional[Engine] = None) -> "AuditSource":
        reader = build_reader(settings, engine=engine)
        dedup = None
        if settings.dedup_enabled:
            dedup = DropDuplicatedEventsFilter(settings.dedup_capacity, settings.dedup_fields)
        try:
            return cls(
                reader=reader,
                channel=channel,
                batch_size=settings.batch_size,
                minimum_cycle_interval=settings.minimum_cycle_interval_seconds,
                dedup_filter=dedup,
            )
        except ConfigurationError:
            reader.close()
            raise

    def process(self) -> Status:
        started = self._clock()
        try:
            events = self.reader.read_events(self.batch_size)
            if self.dedup_filter is not None:
                events = self.dedup_filter.intercept_batch(events)
            self.channel.process_batch(events)
            if self.dedup_filter is not None:
                self.dedup_filter.acknowledge(events)
            self.reader.commit()
        except Exception as e:
            self.status = Status.BACKOFF
            self.reader.rewind()
            logger.exception("audit cycle failed: %s", e)
            raise EventDeliveryError(str(e)) from e

        self.status = Status.READY
        self._pace(started)
        return self.status

    def _pace(self, started: float) -> None:
        remaining = self.minimum_cycle_interval - (self._clock() - started)
        if remaining > 0:
            self._sleep(remaining)

    def stop(self) -> None:
        self.reader.close()
        if self.dedup_filter is not None:
            self.dedup_filter.close()
