"""
Analytics event data models.

- Event: typed analytics event built by the host application
- SendEventsRequest / SendEventsResponse: HTTP ingestion envelope
- Data and hidden data are lists of {"key": ..., "value": [...]} pairs
"""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Event types emitted by the dispatch layer itself and common host events."""

    WEB_REQUEST = "web_request"
    CREATE_ENTITY = "create_entity"
    UPDATE_ENTITY = "update_entity"
    DELETE_ENTITY = "delete_entity"
    IMPORT_ENTITY = "import_entity"
    INITIALISE_ANALYTICS = "initialise_analytics"


def to_key_value_pairs(data: Mapping[str, Any]) -> List[Dict[str, Any]]:
    """
    Convert a mapping to the list-of-pairs representation.

    Every value becomes a list of strings: scalars are wrapped, lists keep
    their elements, nested structures are JSON encoded. None becomes [].
    """
    pairs = []
    for key, value in data.items():
        pairs.append({"key": str(key), "value": _as_string_list(value)})
    return pairs


def _as_string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [_as_string(item) for item in value if item is not None]
    return [_as_string(value)]


def _as_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class Event(BaseModel):
    """
    Typed analytics event.

    Serialised with ``as_json`` before it enters the dispatch pipeline.
    """

    environment: str = Field(description="Deployment environment the event came from")
    event_type: str = Field(min_length=1, description="Event type, e.g. web_request")
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event happened",
    )
    event_tags: Optional[List[str]] = Field(default=None, description="Free-form tags")
    namespace: Optional[str] = Field(default=None, description="Host application namespace")

    # Request details
    request_uuid: Optional[str] = Field(default=None, max_length=128)
    request_user_agent: Optional[str] = Field(default=None)
    request_method: Optional[str] = Field(default=None)
    request_path: Optional[str] = Field(default=None)
    request_query: Optional[List[Dict[str, Any]]] = Field(default=None)
    request_referer: Optional[str] = Field(default=None)
    anonymised_user_agent_and_ip: Optional[str] = Field(default=None)

    # Entity details
    entity_table_name: Optional[str] = Field(default=None)
    data: Optional[List[Dict[str, Any]]] = Field(default=None)
    hidden_data: Optional[List[Dict[str, Any]]] = Field(default=None)

    model_config = ConfigDict(use_enum_values=True)

    def with_request_uuid(self, request_uuid: Optional[str] = None) -> "Event":
        self.request_uuid = request_uuid or str(uuid.uuid4())
        return self

    def with_tags(self, tags: List[str]) -> "Event":
        self.event_tags = list(tags)
        return self

    def with_entity_table_name(self, table_name: str) -> "Event":
        self.entity_table_name = table_name
        return self

    def with_data(self, data: Mapping[str, Any]) -> "Event":
        """Append ``data`` as key/value pairs."""
        self.data = (self.data or []) + to_key_value_pairs(data)
        return self

    def with_hidden_data(self, hidden_data: Mapping[str, Any]) -> "Event":
        """Append ``hidden_data`` as key/value pairs; these are redacted in logs."""
        self.hidden_data = (self.hidden_data or []) + to_key_value_pairs(hidden_data)
        return self

    def as_json(self) -> Dict[str, Any]:
        """JSON-ready mapping of the event, omitting unset optional fields."""
        return self.model_dump(mode="json", exclude_none=True)


class SendEventsRequest(BaseModel):
    """
    Batch of events posted to the HTTP ingestion endpoint.

    Events are plain mappings; the dispatch layer does not validate schema.
    """

    events: List[Dict[str, Any]] = Field(
        min_length=1,
        max_length=500,
        description="Event mappings to dispatch (1-500 events)",
    )


class SendEventsResponse(BaseModel):
    """202 Accepted response."""

    message: str = Field(description="Response message")
    events_accepted: int = Field(description="Number of events accepted")
    request_id: str = Field(description="Unique request identifier")
    timestamp: datetime = Field(description="Processing timestamp")


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(description="Error code")
    message: str = Field(description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details"
    )
