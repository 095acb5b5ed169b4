from __future__ import annotations
from typing import Callable, Dict, Mapping, Optional, Protocol
import orjson
from auditsource.errors import ConfigurationError
from auditsource.models import AuditEvent


class EventSerializer(Protocol):
    def process(self, event: AuditEvent) -> AuditEvent: ...


class JsonEventSerializer:
    """Body is the compact JSON object of the event fields, column order kept."""

    def __init__(self, headers: Optional[Mapping[str, str]] = None):
        self.headers = dict(headers or {})

    def process(self, event: AuditEvent) -> AuditEvent:
        event.body = orjson.dumps(event.fields)
        if self.headers:
            event.headers.update(self.headers)
        return event


SERIALIZERS: Dict[str, Callable[..., EventSerializer]] = {
    "json": JsonEventSerializer,
}


def build_serializer(name: str, headers: Optional[Mapping[str, str]] = None) -> EventSerializer:
    factory = SERIALIZERS.get(name.strip().lower())
    if factory is None:
        raise ConfigurationError(f"unknown serializer {name!r}, expected one of {sorted(SERIALIZERS)}")
    return factory(headers=headers)
