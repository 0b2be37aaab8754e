"""
Envelope payload codec.

Producer side: entity snapshots are serialized structurally to JSON, keeping
field names. There is no schema negotiation; consumers read the fields they
need and ignore the rest.

Consumer side: a tolerant reader. Fields are addressed by dotted path
(``freelancer.username``). A missing key, a JSON null, or a path that runs
through a non-object all yield ABSENT instead of failing. Only a payload whose
top level cannot be parsed raises MalformedPayload.

Note: the string "null" is an ordinary string value here. Absence is always
structural (missing key or JSON null).
"""

import json
from collections.abc import Mapping
from typing import Any, Union

from pydantic_core import to_jsonable_python

from shared.errors import MalformedPayload


class _Absent:
    """Marker for a field that is not present in a payload."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"

    def __str__(self) -> str:
        return ""


ABSENT = _Absent()

RawPayload = Union[bytes, bytearray, str]


def is_absent(value: Any) -> bool:
    """True if a value extracted from a payload is ABSENT."""
    return value is ABSENT


def encode(snapshot: Any) -> bytes:
    """
    Serialize an entity snapshot to payload bytes.

    Accepts pydantic models, dataclasses, and mappings. Datetimes, enums and
    nested models are converted to JSON primitives.
    """
    try:
        data = to_jsonable_python(snapshot)
    except Exception as e:
        raise MalformedPayload(f"Cannot serialize {type(snapshot).__name__}: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPayload(
            f"Snapshot must serialize to an object, got {type(data).__name__}"
        )
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


class PayloadView:
    """
    Read-only view over a decoded payload.

    Example:
        view = decode(b'{"title": "Fix bug", "freelancer": null}')
        view.extract("title")                # "Fix bug"
        view.extract("freelancer.username")  # ABSENT
    """

    def __init__(self, data: Mapping[str, Any]):
        self._data = data

    @property
    def data(self) -> Mapping[str, Any]:
        return self._data

    def extract(self, path: str) -> Any:
        """Value at a dotted path, or ABSENT."""
        return _walk(self._data, path)

    def extract_many(self, paths: Mapping[str, str]) -> dict[str, Any]:
        """Extract several paths at once, keyed by the caller's names."""
        return {name: self.extract(path) for name, path in paths.items()}

    def __contains__(self, path: str) -> bool:
        return self.extract(path) is not ABSENT

    def __repr__(self) -> str:
        return f"PayloadView({dict(self._data)!r})"


def decode(payload: Union[RawPayload, Mapping[str, Any], PayloadView]) -> PayloadView:
    """
    Parse the top level of a payload.

    Raises:
        MalformedPayload: If the payload is not JSON or not a JSON object
    """
    if isinstance(payload, PayloadView):
        return payload
    if isinstance(payload, Mapping):
        return PayloadView(payload)

    if isinstance(payload, (bytes, bytearray)):
        try:
            text = bytes(payload).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPayload(f"Payload is not UTF-8: {e}") from e
    elif isinstance(payload, str):
        text = payload
    else:
        raise MalformedPayload(f"Unsupported payload type: {type(payload).__name__}")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedPayload(f"Payload is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedPayload(f"Payload top level must be an object, got {type(data).__name__}")
    return PayloadView(data)


def extract(payload: Union[RawPayload, Mapping[str, Any], PayloadView], path: str) -> Any:
    """
    Extract a value by dotted path.

    Returns ABSENT for a missing optional field. Raises MalformedPayload only
    when the payload itself cannot be parsed.
    """
    return decode(payload).extract(path)


def _walk(data: Any, path: str) -> Any:
    current = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return ABSENT
        current = current[part]
        if current is None:
            return ABSENT
    return current
