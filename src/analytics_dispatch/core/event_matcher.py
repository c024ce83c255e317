"""
Event matching for debug logging.

Filters are configured as::

    {"event_filters": [{"event_type": "create_entity", "data": {"key": "id"}}]}

An event matches when any filter matches. A filter matches when every field
in it matches the event: nested mappings recurse, other values are treated
as regular expressions searched in the string form of the event's field.
"""

import re
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


class EventMatcher:
    """Decides whether an event should be echoed in debug mode."""

    def __init__(self, filters: Optional[Mapping[str, Any]] = None) -> None:
        filters = filters or {}
        self.event_filters: List[Dict[str, Any]] = [
            event_filter
            for event_filter in filters.get("event_filters", [])
            if isinstance(event_filter, Mapping)
        ]
        self._compiled_patterns: Dict[str, "re.Pattern[str]"] = {}

    def matched(self, event: Mapping[str, Any]) -> bool:
        return any(self._filter_matched(event_filter, event) for event_filter in self.event_filters)

    def _filter_matched(self, event_filter: Mapping[str, Any], event: Any) -> bool:
        if not isinstance(event, Mapping):
            return False

        for field, expected in event_filter.items():
            if field not in event:
                return False

            actual = event[field]
            if isinstance(expected, Mapping):
                if not self._nested_matched(expected, actual):
                    return False
            elif not self._value_matched(expected, actual):
                return False

        return True

    def _nested_matched(self, expected: Mapping[str, Any], actual: Any) -> bool:
        # Event data is a list of key/value pairs, so a nested filter
        # matches if any element satisfies it
        if isinstance(actual, (list, tuple)):
            return any(self._filter_matched(expected, item) for item in actual)
        return self._filter_matched(expected, actual)

    def _value_matched(self, expected: Any, actual: Any) -> bool:
        if isinstance(actual, (list, tuple)):
            return any(self._value_matched(expected, item) for item in actual)
        if actual is None:
            return False
        return self._pattern(str(expected)).search(str(actual)) is not None

    def _pattern(self, expression: str) -> "re.Pattern[str]":
        pattern = self._compiled_patterns.get(expression)
        if pattern is None:
            try:
                pattern = re.compile(expression)
            except re.error:
                logger.warning("Invalid debug filter pattern, matching literally", pattern=expression)
                pattern = re.compile(re.escape(expression))
            self._compiled_patterns[expression] = pattern
        return pattern
