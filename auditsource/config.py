from __future__ import annotations
import os
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from auditsource.errors import ConfigurationError

# Names accepted for the cursor column type override. Values are SqlType member names.
CURSOR_TYPE_NAMES = {
    "integer": "INTEGER",
    "int": "INTEGER",
    "bigint": "INTEGER",
    "smallint": "INTEGER",
    "numeric": "FLOATING_POINT",
    "number": "FLOATING_POINT",
    "float": "FLOATING_POINT",
    "double": "FLOATING_POINT",
    "boolean": "BOOLEAN",
    "bool": "BOOLEAN",
    "timestamp": "TIMESTAMP",
    "string": "TEXT",
    "text": "TEXT",
    "varchar": "TEXT",
}

DEFAULT_CHECKPOINT_PATH = "committed_value.backup"


def _env_optional(name: str) -> Optional[str]:
    v = os.getenv(name)
    if v is None or not v.strip():
        return None
    return v


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


def _env(name: str, default: Optional[str] = None) -> Any:
    # read at Settings() time and validated like explicit input
    return Field(default_factory=lambda: os.getenv(name, default))


class DedupFields(str, Enum):
    HEADERS = "headers"
    BODY = "body"
    BOTH = "both"


class Settings(BaseModel):
    model_config = ConfigDict(validate_default=True)

    database_url: str = _env("AUDIT_DATABASE_URL", "sqlite:///audit.sqlite3")

    table_name: Optional[str] = Field(default_factory=lambda: _env_optional("AUDIT_TABLE"))
    cursor_column: Optional[str] = Field(default_factory=lambda: _env_optional("AUDIT_CURSOR_COLUMN"))
    cursor_column_type: Optional[str] = Field(default_factory=lambda: _env_optional("AUDIT_CURSOR_COLUMN_TYPE"))
    query: Optional[str] = Field(default_factory=lambda: _env_optional("AUDIT_QUERY"))
    checkpoint_path: str = _env("AUDIT_CHECKPOINT_PATH", DEFAULT_CHECKPOINT_PATH)

    batch_size: int = _env("AUDIT_BATCH_SIZE", "100")
    minimum_cycle_interval_ms: int = _env("AUDIT_MIN_CYCLE_INTERVAL_MS", "10000")
    serializer: str = _env("AUDIT_SERIALIZER", "json")

    dedup_enabled: bool = Field(default_factory=lambda: _env_bool("AUDIT_DEDUP_ENABLED", False))
    dedup_capacity: int = _env("AUDIT_DEDUP_CAPACITY", "1000")
    dedup_fields: DedupFields = _env("AUDIT_DEDUP_FIELDS", "both")

    kafka_bootstrap: str = _env("KAFKA_BOOTSTRAP", "localhost:9092")
    topic: str = _env("AUDIT_TOPIC", "audit.events")

    @field_validator("table_name", "cursor_column", "query", "cursor_column_type")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("cursor_column_type")
    @classmethod
    def _known_type(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v.lower() not in CURSOR_TYPE_NAMES:
            raise ValueError(f"unknown cursor column type {v!r}")
        return v

    @field_validator("batch_size", "dedup_capacity")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("minimum_cycle_interval_ms")
    @classmethod
    def _non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @model_validator(mode="after")
    def _required_names(self) -> "Settings":
        if not self.cursor_column:
            raise ValueError("cursor_column needs to be configured")
        if not self.query and not self.table_name:
            raise ValueError("table_name needs to be configured when no query is given")
        return self

    @property
    def minimum_cycle_interval_seconds(self) -> float:
        return self.minimum_cycle_interval_ms / 1000.0


def load_settings(**overrides: Any) -> Settings:
    """Build Settings from the environment plus explicit overrides.

    Validation problems surface as ConfigurationError rather than pydantic's
    ValidationError so callers only deal with one taxonomy.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
