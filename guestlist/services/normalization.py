"""
Normalization of stored guest rows into the canonical GuestView.

Guest rows reach us under two historical naming conventions: the snake_case
storage columns and the camelCase fields written by older clients. Every
attribute is looked up under both names here and nowhere else; the
snake_case key wins when both carry a value.

normalize() never raises for a row that conforms to the storage schema.
Unknown or missing input degrades to documented defaults.
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional

from guestlist.schemas.guest import UNKNOWN_TIMESTAMP, GuestStatus, GuestView, LedgerEntryView

# ASCII whitespace only; the SQL status filter folds the same set
STATUS_WHITESPACE = " \t\n\r\v\f"
_WHITESPACE = re.compile(r"[ \t\n\r\v\f]+")

_KNOWN_STATUSES = {status.value: status for status in GuestStatus}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def pick(row: Mapping[str, Any], name: str, *aliases: str) -> Any:
    """Return the first non-empty value among name, its camelCase form and aliases."""
    for key in (name, _camel(name), *aliases):
        value = row.get(key)
        if value is None:
            continue
        if isinstance(value, str) and value.strip() == "":
            continue
        return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _count(value: Any) -> int:
    """Coerce a counter to a non-negative int; unparseable becomes 0."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        return max(0, int(value))
    try:
        return max(0, int(str(value).strip()))
    except ValueError:
        return 0


def normalize_status(value: Any) -> GuestStatus:
    """Map free-text status onto the canonical enum.

    "Checked In", " checked   in " and "checked_in" all become CHECKED_IN.
    """
    if isinstance(value, GuestStatus):
        return value
    if not isinstance(value, str):
        return GuestStatus.NOT_CHECKED_IN
    key = _WHITESPACE.sub("_", value.strip(STATUS_WHITESPACE).lower())
    return _KNOWN_STATUSES.get(key, GuestStatus.NOT_CHECKED_IN)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp into a naive UTC datetime, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_timestamp(value: Any) -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        return UNKNOWN_TIMESTAMP
    return parsed.isoformat()


def normalize(row: Mapping[str, Any]) -> GuestView:
    """Map a raw guest row (either naming convention) to a GuestView."""
    first_name = _text(pick(row, "first_name"))
    last_name = _text(pick(row, "last_name"))
    allowed = _count(pick(row, "plus_ones_allowed"))
    checked_in = _count(pick(row, "plus_ones_checked_in"))
    checked_in_by = pick(row, "checked_in_by")

    return GuestView(
        id=_text(pick(row, "id", "guest_id", "guestId")),
        first_name=first_name,
        last_name=last_name,
        full_name=f"{first_name} {last_name}".strip(),
        email=_text(pick(row, "email")),
        phone=_text(pick(row, "phone")),
        ticket_type=_text(pick(row, "ticket_type")) or "General",
        plus_ones_allowed=allowed,
        plus_ones_checked_in=checked_in,
        plus_ones_remaining=max(0, allowed - checked_in),
        status=normalize_status(pick(row, "status")),
        check_in_time=format_timestamp(pick(row, "check_in_time")),
        checked_in_by=_text(checked_in_by) if checked_in_by is not None else None,
        confirmation_code=_text(pick(row, "confirmation_code")),
        notes=_text(pick(row, "notes")),
        created_at=format_timestamp(pick(row, "created_at")),
        last_modified=format_timestamp(pick(row, "last_modified")),
    )


def normalize_ledger_entry(row: Mapping[str, Any]) -> LedgerEntryView:
    """Map a raw ledger row to a LedgerEntryView."""
    guest_id = pick(row, "guest_id")
    return LedgerEntryView(
        id=_text(pick(row, "id")),
        guest_id=_text(guest_id) if guest_id is not None else None,
        timestamp=format_timestamp(pick(row, "timestamp")),
        performed_by=_text(pick(row, "performed_by", "usher_name")),
        plus_ones_at_check_in=_count(pick(row, "plus_ones_at_check_in", "plus_ones_count")),
        action=_text(pick(row, "action")),
        guest_name=_text(pick(row, "guest_name")),
        notes=_text(pick(row, "notes")),
        confirmation_code=_text(pick(row, "confirmation_code")),
    )
