import pytest
from auditsource.config import DedupFields
from auditsource.dedup import DropDuplicatedEventsFilter
from auditsource.errors import ConfigurationError, DeliveryError, EventDeliveryError
from auditsource.reader import build_reader
from auditsource.serializers import JsonEventSerializer
from auditsource.source import AuditSource, Status


class RecordingChannel:
    def __init__(self, failures=0):
        self.failures = failures
        self.batches = []

    def process_batch(self, events):
        if self.failures:
            self.failures -= 1
            raise DeliveryError("channel down")
        self.batches.append([e.fields["id"] for e in events])


class FakeClock:
    def __init__(self, cycle_cost=0.0):
        self.now = 100.0
        self.cycle_cost = cycle_cost
        self.sleeps = []

    def clock(self):
        t = self.now
        self.now += self.cycle_cost
        return t

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _source(settings, engine, channel, clock=None, **overrides):
    s = settings(**overrides)
    src = AuditSource.configure(s, channel, engine=engine)
    if clock is not None:
        src._clock = clock.clock
        src._sleep = clock.sleep
    return src


def test_process_delivers_then_commits(engine, settings, insert_rows):
    insert_rows((1, 0, "a"), (2, 0, "b"), (3, 0, "c"))
    channel = RecordingChannel()
    src = _source(settings, engine, channel, batch_size=2)

    assert src.process() is Status.READY
    assert channel.batches == [[1, 2]]
    assert src.reader.committed_value == "2"

    src.process()
    assert channel.batches == [[1, 2], [3]]
    assert src.reader.committed_value == "3"
    src.stop()


def test_failed_delivery_does_not_commit_and_rereads(engine, settings, insert_rows):
    insert_rows((1, 0, "a"), (2, 0, "b"))
    s = settings()
    failing = RecordingChannel(failures=1)
    src = AuditSource.configure(s, failing, engine=engine)

    with pytest.raises(EventDeliveryError) as exc:
        src.process()
    assert isinstance(exc.value.__cause__, DeliveryError)
    assert src.status is Status.BACKOFF
    assert src.reader.committed_value is None
    src.stop()

    channel = RecordingChannel()
    retry = AuditSource.configure(s, channel, engine=engine)
    retry.process()
    assert channel.batches == [[1, 2]]
    retry.stop()


def test_sleeps_remainder_of_minimum_interval(engine, settings):
    clock = FakeClock(cycle_cost=4.0)
    src = _source(settings, engine, RecordingChannel(), clock=clock, minimum_cycle_interval_ms=10000)
    src.process()
    assert clock.sleeps == [pytest.approx(6.0)]
    src.stop()


def test_slow_cycle_does_not_sleep(engine, settings):
    clock = FakeClock(cycle_cost=12.0)
    src = _source(settings, engine, RecordingChannel(), clock=clock, minimum_cycle_interval_ms=10000)
    src.process()
    src.process()
    assert clock.sleeps == []
    src.stop()


def test_no_backoff_policy_of_its_own():
    assert AuditSource.backoff_sleep_increment == 0
    assert AuditSource.max_backoff_sleep_interval == 0


def test_dedup_filter_drops_redelivered_events(engine, settings, insert_rows):
    insert_rows((1, 0, "a"))
    channel = RecordingChannel()
    src = _source(settings, engine, channel, dedup_enabled=True, dedup_capacity=10)
    assert src.dedup_filter is not None

    src.process()
    # simulate a lost checkpoint: the same row is read again
    src.reader.checkpoint.reset()
    src.reader._committed_value = None
    src.process()
    assert channel.batches == [[1], []]
    src.stop()


def test_stop_is_safe_to_call_twice(engine, settings):
    src = _source(settings, engine, RecordingChannel())
    src.stop()
    src.stop()


def test_retry_after_failed_full_batch_starts_from_checkpoint(engine, settings, insert_rows):
    insert_rows((1, 0, "a"), (2, 0, "b"), (3, 0, "c"))
    channel = RecordingChannel(failures=1)
    src = _source(settings, engine, channel, batch_size=2)

    with pytest.raises(EventDeliveryError):
        src.process()
    assert src.reader.pending_value is None

    src.process()
    assert channel.batches == [[1, 2]]
    assert src.reader.committed_value == "2"
    src.process()
    assert channel.batches == [[1, 2], [3]]
    assert src.reader.committed_value == "3"
    src.stop()


def test_dedup_does_not_drop_events_whose_delivery_failed(engine, settings, insert_rows):
    insert_rows((1, 0, "a"), (2, 0, "b"))
    channel = RecordingChannel(failures=1)
    src = _source(settings, engine, channel, dedup_enabled=True, dedup_capacity=10)

    with pytest.raises(EventDeliveryError):
        src.process()
    src.process()
    assert channel.batches == [[1, 2]]
    assert src.reader.committed_value == "2"
    assert src.dedup_filter.dropped == 0
    src.stop()


def test_headers_only_dedup_needs_serializer_headers(engine, settings):
    with pytest.raises(ConfigurationError):
        _source(settings, engine, RecordingChannel(), dedup_enabled=True, dedup_fields="headers")

    src = _source(settings, engine, RecordingChannel(), dedup_enabled=True, dedup_fields="body")
    src.stop()

    reader = build_reader(settings(), engine=engine)
    reader.serializer = JsonEventSerializer(headers={"source": "audit"})
    src = AuditSource(reader, RecordingChannel(),
                      dedup_filter=DropDuplicatedEventsFilter(10, DedupFields.HEADERS))
    src.stop()
