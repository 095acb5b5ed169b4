from __future__ import annotations
import logging
import zlib
from typing import Dict, Iterable, List, Optional
import orjson
from auditsource.config import DedupFields
from auditsource.models import AuditEvent

logger = logging.getLogger(__name__)


class SizeLimitedSet:
    """Membership set that forgets its oldest entry once ``capacity`` is exceeded.

    Eviction follows insertion order only; seeing an entry again does not
    refresh it.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._items: Dict[int, None] = {}

    def seen(self, fingerprint: int) -> bool:
        return fingerprint in self._items

    def remember(self, fingerprint: int) -> None:
        if fingerprint in self._items:
            return
        self._items[fingerprint] = None
        if len(self._items) > self.capacity:
            del self._items[next(iter(self._items))]

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._items


def _headers_hash(event: AuditEvent) -> int:
    return zlib.crc32(orjson.dumps(event.headers, option=orjson.OPT_SORT_KEYS))


def _body_hash(event: AuditEvent) -> int:
    return zlib.crc32(event.body or b"")


def event_fingerprint(event: AuditEvent, fields: DedupFields = DedupFields.BOTH) -> int:
    if fields is DedupFields.HEADERS:
        return _headers_hash(event)
    if fields is DedupFields.BODY:
        return _body_hash(event)
    return _headers_hash(event) ^ _body_hash(event)


class DropDuplicatedEventsFilter:
    """Drops events whose fingerprint was among the last ``capacity`` distinct ones delivered.

    Best effort only: after a restart or once more than ``capacity`` distinct
    events went by, a redelivered event passes through again.
    """

    def __init__(self, capacity: int = 1000, fields: DedupFields = DedupFields.BOTH):
        self.fields = DedupFields(fields)
        self.recent = SizeLimitedSet(capacity)
        self.dropped = 0
        logger.info("initialized with size=%d, fields=%s", capacity, self.fields.value)

    def _drop(self, fp: int) -> None:
        self.dropped += 1
        logger.debug("dropping duplicated event fingerprint=%08x", fp)

    def intercept(self, event: AuditEvent) -> Optional[AuditEvent]:
        fp = event_fingerprint(event, self.fields)
        if self.recent.seen(fp):
            self._drop(fp)
            return None
        return event

    def intercept_batch(self, events: Iterable[AuditEvent]) -> List[AuditEvent]:
        """Drop events already acknowledged, and repeats within the batch.

        Nothing is remembered here: only ``acknowledge`` adds fingerprints, so a
        batch that failed downstream passes again when it is read again.
        """
        kept: List[AuditEvent] = []
        in_batch = set()
        for event in events:
            fp = event_fingerprint(event, self.fields)
            if fp in in_batch or self.recent.seen(fp):
                self._drop(fp)
                continue
            in_batch.add(fp)
            kept.append(event)
        return kept

    def acknowledge(self, events: Iterable[AuditEvent]) -> None:
        for event in events:
            self.recent.remember(event_fingerprint(event, self.fields))

    def close(self) -> None:
        self.recent.clear()
