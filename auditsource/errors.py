from __future__ import annotations


class AuditSourceError(Exception):
    pass


class ConfigurationError(AuditSourceError):
    """Missing or invalid settings. The reader is never built."""


class SchemaError(AuditSourceError):
    """The audited table does not look like the settings say it does."""


class ConnectivityError(AuditSourceError):
    """Could not obtain or keep a database connection."""


class ReaderIOError(AuditSourceError, OSError):
    pass


class CheckpointError(ReaderIOError):
    pass


class EventReadError(ReaderIOError):
    pass


class RowConversionError(ReaderIOError):
    pass


class DeliveryError(AuditSourceError):
    """The downstream channel rejected a batch; nothing in it counts as delivered."""


class EventDeliveryError(AuditSourceError):
    """Raised by the polling driver when a whole read/deliver/commit cycle fails."""
