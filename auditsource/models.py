from __future__ import annotations
from typing import Dict, Optional, Union
from pydantic import BaseModel, Field

FieldValue = Union[bool, int, float, str, None]


class AuditEvent(BaseModel):
    fields: Dict[str, FieldValue] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[bytes] = None

    def add_field(self, name: str, value: FieldValue) -> None:
        self.fields[name] = value
