from enum import Enum
from typing import Optional
from pydantic import BaseModel

class EventType(str, Enum):
    MESSAGE_SENT = "message_sent"
    CALL_MADE = "call_made"
    FORM_SUBMITTED = "form_submitted"
    LOGIN = "login"
    CUSTOM = "custom"

# Unrecognized type strings are stored as-is; this list is informational.
KNOWN_EVENT_TYPES: list[str] = [t.value for t in EventType]

class SummaryWindow(str, Enum):
    LAST_24H = "last_24h"
    LAST_7D = "last_7d"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SummaryWindow":
        """Lenient parse: anything other than last_7d means last_24h."""
        if value == cls.LAST_7D.value:
            return cls.LAST_7D
        return cls.LAST_24H

class SummarySource(str, Enum):
    CACHE = "cache"
    DENORMALIZED = "denormalized"
    AGGREGATION = "aggregation"

class ErrorDetail(BaseModel):
    code: str
    message: str
    status: int

class ErrorResponse(BaseModel):
    error: ErrorDetail
