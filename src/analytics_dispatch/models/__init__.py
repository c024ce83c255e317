"""
Pydantic data models package.

Contains:
- Analytics event model
- HTTP request and response envelopes
"""

from .event import (
    ErrorResponse,
    Event,
    EventType,
    SendEventsRequest,
    SendEventsResponse,
    to_key_value_pairs,
)

__all__ = [
    "ErrorResponse",
    "Event",
    "EventType",
    "SendEventsRequest",
    "SendEventsResponse",
    "to_key_value_pairs",
]
