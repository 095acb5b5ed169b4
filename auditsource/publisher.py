from __future__ import annotations
from typing import Any, List, Optional, Protocol, Sequence
from confluent_kafka import KafkaException, Producer
from auditsource.errors import DeliveryError
from auditsource.models import AuditEvent


class EventChannel(Protocol):
    """Downstream sink for one batch. Raises DeliveryError if any of it failed."""

    def process_batch(self, events: Sequence[AuditEvent]) -> None: ...


def _headers(evt: AuditEvent) -> List[tuple]:
    return [(k, v.encode("utf-8")) for k, v in evt.headers.items()]


class KafkaEventChannel:
    def __init__(self, bootstrap: str, topic: str, producer: Optional[Any] = None,
                 flush_timeout_seconds: float = 30.0):
        self.topic = topic
        self.flush_timeout_seconds = flush_timeout_seconds
        if producer is None:
            producer = Producer({"bootstrap.servers": bootstrap, "enable.idempotence": True})
        self.producer = producer

    def process_batch(self, events: Sequence[AuditEvent]) -> None:
        if not events:
            return

        errors: List[str] = []

        def delivery(err, msg):
            if err is not None:
                errors.append(str(err))

        try:
            for evt in events:
                self.producer.produce(
                    topic=self.topic,
                    value=evt.body,
                    headers=_headers(evt),
                    callback=delivery,
                )
                self.producer.poll(0)
        except (BufferError, KafkaException) as e:
            self.producer.flush(self.flush_timeout_seconds)
            raise DeliveryError(f"cannot produce to {self.topic}: {e}") from e

        remaining = self.producer.flush(self.flush_timeout_seconds)
        if remaining:
            raise DeliveryError(f"{remaining} messages still queued for {self.topic} after flush")
        if errors:
            raise DeliveryError(f"{len(errors)} of {len(events)} messages failed for {self.topic}: {errors[0]}")
