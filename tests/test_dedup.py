import pytest
from auditsource.config import DedupFields
from auditsource.dedup import DropDuplicatedEventsFilter, SizeLimitedSet, event_fingerprint
from auditsource.models import AuditEvent


def _event(body: bytes, **headers) -> AuditEvent:
    return AuditEvent(headers=headers, body=body)


def test_capacity_evicts_oldest_first():
    cache = SizeLimitedSet(2)
    for fp in ("A", "B", "C"):
        cache.remember(fp)
    assert not cache.seen("A")
    assert cache.seen("B")
    assert cache.seen("C")
    assert len(cache) == 2


def test_resighting_does_not_refresh_entry():
    cache = SizeLimitedSet(2)
    cache.remember(1)
    cache.remember(2)
    cache.remember(1)
    cache.remember(3)
    assert not cache.seen(1)
    assert cache.seen(2) and cache.seen(3)


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        SizeLimitedSet(0)


def test_fingerprint_modes():
    a = _event(b'{"id":1}', source="db")
    same_body = _event(b'{"id":1}', source="other")
    assert event_fingerprint(a, DedupFields.BODY) == event_fingerprint(same_body, DedupFields.BODY)
    assert event_fingerprint(a, DedupFields.HEADERS) != event_fingerprint(same_body, DedupFields.HEADERS)
    assert event_fingerprint(a, DedupFields.BOTH) == \
        event_fingerprint(a, DedupFields.HEADERS) ^ event_fingerprint(a, DedupFields.BODY)
    assert 0 <= event_fingerprint(a) < 2 ** 32


def test_headers_fingerprint_ignores_header_order():
    a = AuditEvent(headers={"x": "1", "y": "2"}, body=b"")
    b = AuditEvent(headers={"y": "2", "x": "1"}, body=b"")
    assert event_fingerprint(a, DedupFields.HEADERS) == event_fingerprint(b, DedupFields.HEADERS)


def test_filter_drops_acknowledged_and_in_batch_duplicates():
    f = DropDuplicatedEventsFilter(capacity=10, fields=DedupFields.BOTH)
    batch = f.intercept_batch([_event(b"1"), _event(b"2"), _event(b"1")])
    assert [e.body for e in batch] == [b"1", b"2"]
    f.acknowledge(batch)
    assert [e.body for e in f.intercept_batch([_event(b"2"), _event(b"3")])] == [b"3"]
    assert f.dropped == 2


def test_unacknowledged_batch_passes_again():
    f = DropDuplicatedEventsFilter(capacity=10, fields=DedupFields.BODY)
    first = f.intercept_batch([_event(b"1"), _event(b"2")])
    # delivery failed, nothing acknowledged
    again = f.intercept_batch([_event(b"1"), _event(b"2")])
    assert [e.body for e in again] == [e.body for e in first] == [b"1", b"2"]
    assert len(f.recent) == 0


def test_filter_lets_duplicate_through_after_window():
    f = DropDuplicatedEventsFilter(capacity=1, fields="body")
    f.acknowledge([_event(b"a")])
    assert f.intercept(_event(b"a")) is None
    f.acknowledge([_event(b"b")])
    assert f.intercept(_event(b"a")) is not None


def test_filter_close_forgets_everything():
    f = DropDuplicatedEventsFilter(capacity=5)
    f.acknowledge([_event(b"a")])
    f.close()
    assert f.intercept(_event(b"a")) is not None
