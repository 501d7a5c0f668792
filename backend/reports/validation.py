from __future__ import annotations

import re
from typing import Any, Iterable

from geo.coords import Coordinate
from reports.types import Submission

MAX_ADDRESS_LENGTH = 500
MAX_SLOT_KEYS = 20

_SLOT_ID_RE = re.compile(r"^tile\d+$")
_JS_PROTOCOL_RE = re.compile(r"javascript:", re.IGNORECASE)
_INLINE_HANDLER_RE = re.compile(r"on\w+=", re.IGNORECASE)


class InvalidSubmissionError(ValueError):
    """
    A record or submission request that the engine refuses to process.
    """


def sanitize_address(text: Any, max_length: int = MAX_ADDRESS_LENGTH) -> str:
    """
    Strip markup-ish fragments from a free-text address and cap its length.
    """
    if not isinstance(text, str):
        return ""
    cleaned = text.replace("<", "").replace(">", "")
    cleaned = _JS_PROTOCOL_RE.sub("", cleaned)
    cleaned = _INLINE_HANDLER_RE.sub("", cleaned)
    cleaned = cleaned.strip()
    return cleaned[:max_length]


def validate_selected_slots(slots: Any) -> bool:
    """
    1..20 keys, each `tile<digits>`, each mapped to a real bool.
    """
    if not isinstance(slots, dict):
        return False
    if len(slots) == 0 or len(slots) > MAX_SLOT_KEYS:
        return False
    return all(
        isinstance(k, str) and _SLOT_ID_RE.match(k) is not None and isinstance(v, bool)
        for k, v in slots.items()
    )


def require_valid_location(location: Any, *, record_id: str | None = None) -> Coordinate:
    if not isinstance(location, Coordinate) or not location.is_valid():
        what = f"record {record_id!r}" if record_id else "record"
        raise InvalidSubmissionError(f"{what} has a missing or malformed location: {location!r}")
    return location


def require_valid_batch(submissions: Iterable[Submission]) -> None:
    """
    Reject the whole batch if any record lacks a usable location.
    """
    for s in submissions:
        require_valid_location(getattr(s, "location", None), record_id=getattr(s, "id", None))
