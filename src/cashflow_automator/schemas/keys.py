"""
Key, identifier and filename derivation (CRITICAL).

This module defines THE deterministic identity functions of the pipeline.

1. Composite key: {YYYY-MM-DD}|{Shift}|{branch}
   - Used for ledger row matching, index diagnostics and logs
   - Identical whether the date came in as a date object, DD/MM/YYYY
     or an ISO string

2. Item identifier: {epoch_ms}_{label}
   - epoch_ms = immutable timestamp of the item (mail received, file mtime)
   - label = stripped subject/filename with everything except word
     characters, whitespace and '-' removed, cut to 50 characters
   - Collisions between items with the same timestamp and label prefix
     are accepted

3. Artifact filename: {BRANCH}_{YYYY-MM-DD}_{SHIFT}[_A{n}].pdf
   - _A{n} only when one message carries several PDFs
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Union

from .closure_record import Shift

# Separator between composite key parts
KEY_SEPARATOR = "|"

# Date-named containers in the destination store
DATE_FOLDER_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Label part of an identifier is cut to this length
IDENTIFIER_LABEL_LENGTH = 50

_DMY = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
_LABEL_DISALLOWED = re.compile(r"[^\w\s-]", re.ASCII)
_IDENTIFIER = re.compile(r"^(\d+)_(.*)$", re.DOTALL)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def normalize_date(value: Any) -> str:
    """
    Normalize a date value to YYYY-MM-DD.

    Accepts date/datetime objects, DD/MM/YYYY strings and ISO strings.
    Any other string is returned stripped (and will not match a real key).
    """
    if value is None or value == "":
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    match = _DMY.match(text)
    if match:
        day, month, year = match.groups()
        return f"{year}-{month}-{day}"
    return text


def shift_for_time(closure_time: Optional[str], cutoff_hour: int) -> Shift:
    """Morning when the closure hour is below the cutoff, else Evening."""
    if closure_time:
        hour = int(closure_time.split(":")[0])
        if hour < cutoff_hour:
            return Shift.MORNING
    return Shift.EVENING


def _shift_label(shift: Union[Shift, str, None]) -> str:
    parsed = Shift.parse(shift)
    if parsed is not None:
        return parsed.value
    return "" if shift is None else str(shift).strip()


def composite_key(date_value: Any, shift: Union[Shift, str, None], branch: Optional[str]) -> str:
    """Build the composite key used for ledger matching and diagnostics."""
    return KEY_SEPARATOR.join(
        [normalize_date(date_value), _shift_label(shift), (branch or "").strip()]
    )


def epoch_millis(timestamp: datetime) -> int:
    """Milliseconds since the Unix epoch; naive datetimes are local time."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.astimezone()
    return (timestamp - _EPOCH) // timedelta(milliseconds=1)


def sanitize_label(label: str) -> str:
    """Sanitized, length-bounded label used inside identifiers."""
    cleaned = _LABEL_DISALLOWED.sub("", (label or "").strip())
    return cleaned[:IDENTIFIER_LABEL_LENGTH].rstrip()


def item_identifier(timestamp: datetime, label: str) -> str:
    """
    Derive the processed-index identifier of a logical item.

    Args:
        timestamp: Immutable timestamp of the item
        label: Subject or filename

    Returns:
        "{epoch_ms}_{sanitized label}"
    """
    return f"{epoch_millis(timestamp)}_{sanitize_label(label)}"


def parse_identifier(identifier: str) -> tuple[Optional[datetime], str]:
    """
    Split an identifier back into its timestamp (UTC) and label.

    Returns (None, identifier) for lines that do not follow the format.
    """
    match = _IDENTIFIER.match(identifier.strip())
    if not match:
        return None, identifier.strip()
    millis, label = match.groups()
    return _EPOCH + timedelta(milliseconds=int(millis)), label


def artifact_filename(
    branch: str,
    closure_date: str,
    closure_time: str,
    cutoff_hour: int,
    index: int = 0,
    total: int = 1,
) -> str:
    """
    Derive the destination filename of one attachment.

    Args:
        branch: Branch name as printed in the subject
        closure_date: DD/MM/YYYY
        closure_time: HH:MM:SS
        cutoff_hour: Shift cutoff hour
        index: Zero-based attachment position
        total: Number of PDF attachments in the message
    """
    branch_token = re.sub(r"\s+", "_", branch.strip())
    shift = shift_for_time(closure_time, cutoff_hour)
    suffix = f"_A{index + 1}" if total > 1 else ""
    return f"{branch_token}_{normalize_date(closure_date)}_{shift.file_token}{suffix}.pdf"
