"""
Hidden data redaction for analytics events.

Events may carry a ``hidden_data`` list of key/value pairs holding personal
data. The backend is allowed to receive it; logs are not. Every event that is
written to a log goes through ``redact`` first.
"""

import copy
from collections.abc import Mapping
from typing import Any, Dict

HIDDEN_DATA_KEY = "hidden_data"
HIDDEN_VALUE = ["HIDDEN"]


def redact(event: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of ``event`` with hidden data values replaced.

    Mappings anywhere in the event are rebuilt as plain dicts, so read-only
    or uncopyable mapping types are redacted like any other. Each entry of
    ``hidden_data`` that is a mapping has its ``value`` and its
    ``key.value`` (when ``key`` is itself a mapping) overwritten with
    ``["HIDDEN"]``. Anything that does not have that shape is left as-is.

    Args:
        event: The event mapping to redact. Never modified.

    Returns:
        A new event dictionary safe to write to logs.
    """
    redacted: Dict[str, Any] = _plain_copy(event)

    hidden_data = redacted.get(HIDDEN_DATA_KEY)
    if isinstance(hidden_data, (list, tuple)):
        for entry in hidden_data:
            _mask_entry(entry)

    return redacted


def _plain_copy(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _plain_copy(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain_copy(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_plain_copy(item) for item in value)
    try:
        return copy.deepcopy(value)
    except (TypeError, copy.Error):
        # Opaque objects that refuse to copy are passed through by reference
        return value


def _mask_entry(entry: Any) -> None:
    # _plain_copy has turned every mapping entry into a dict
    if not isinstance(entry, dict):
        return

    if is_present(entry.get("value")):
        entry["value"] = list(HIDDEN_VALUE)

    key = entry.get("key")
    if isinstance(key, dict) and is_present(key.get("value")):
        key["value"] = list(HIDDEN_VALUE)


def is_present(value: Any) -> bool:
    """
    Whether a field holds something worth hiding.

    None, False, blank strings and empty containers are absent; everything
    else, including 0, is present.
    """
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (Mapping, list, tuple, set)):
        return len(value) > 0
    return True
