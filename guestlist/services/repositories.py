"""
Repository layer abstracting storage (SQLAlchemy vs Firebase Firestore).

Stores hand back plain dict rows keyed by the snake_case storage columns;
services run them through normalize(). A unit of work is delimited by
GuestStore.atomic(): the guest update and the ledger append inside it are
applied together or not at all.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath
from sqlalchemy import String, and_, case, func, insert, not_, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from guestlist.core.config import settings
from guestlist.core.errors import InvariantViolationError, StorageUnavailableError, VersionConflictError
from guestlist.models import CheckInLogEntry, Guest
from guestlist.schemas.guest import GuestStatus, RosterFilters
from guestlist.services.firebase_client import get_firestore_client
from guestlist.services.normalization import STATUS_WHITESPACE, normalize_status, parse_timestamp

logger = logging.getLogger(__name__)


def use_firestore() -> bool:
    return settings.USE_FIREBASE is True


# Sort key -> columns; every ordering ends on id so pages never overlap
SORT_FIELDS: Dict[str, Tuple[str, ...]] = {
    "id": ("id",),
    "name": ("last_name", "first_name"),
    "check_in_time": ("check_in_time",),
    "ticket_type": ("ticket_type",),
}


class GuestStore(ABC):
    """Storage collaborator for guest records and the check-in ledger."""

    @abstractmethod
    def atomic(self):
        """Context manager for one unit of work: commit on exit, roll back on error."""
        ...

    @abstractmethod
    def get_guest(self, guest_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored row including its version, or None."""
        ...

    @abstractmethod
    def conditional_update_guest(self, guest_id: str, expected_version: int, fields: Dict[str, Any]) -> None:
        """Apply fields and bump version if the row is still at expected_version.

        Raises VersionConflictError otherwise. Backends that validate at commit
        raise it from atomic() instead.
        """
        ...

    @abstractmethod
    def append_ledger_entry(self, entry: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def query_guests(
        self, filters: RosterFilters, order_by: str, offset: int, limit: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Return one ordered slice of the filtered set and the filtered total."""
        ...

    @abstractmethod
    def scan_guests(self, filters: RosterFilters, after_id: Optional[str], limit: int) -> List[Dict[str, Any]]:
        """Return up to `limit` filtered rows with id > after_id, in id order.

        Keyset paging: rows leaving the filtered set mid-scan do not shift
        later batches.
        """
        ...

    @abstractmethod
    def search_guests(
        self, term: str, filters: RosterFilters, sort_by: str, descending: bool, limit: int
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_ledger_entries(
        self,
        guest_id: Optional[str] = None,
        action: Optional[str] = None,
        performed_by: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Return ledger rows newest first and the matching total."""
        ...

    @abstractmethod
    def guest_stats(self, since: datetime) -> Dict[str, Any]:
        """Return totals, check-ins since `since` and a per-ticket-type breakdown."""
        ...

    @abstractmethod
    def ping(self) -> None:
        """Round-trip to the backend; raises StorageUnavailableError if it is down."""
        ...


# -------- SQLAlchemy store --------

guests_table = Guest.__table__
ledger_table = CheckInLogEntry.__table__

def _folded_status():
    """Stored status with whitespace turned into spaces, trimmed and lower-cased."""
    folded = guests_table.c.status
    for char in STATUS_WHITESPACE:
        if char != " ":
            folded = func.replace(folded, char, " ", type_=String)
    return func.lower(func.trim(folded, type_=String), type_=String)


_status_key = _folded_status()


def _checked_in_condition():
    """True exactly when normalize_status() maps the stored value to checked_in.

    Either the canonical spelling, or "checked" and "in" separated by a run
    of spaces of any length: the value starts with "checked ", ends with
    " in" and has no other non-space characters.
    """
    spaced = and_(
        _status_key.like("checked %"),
        _status_key.like("% in"),
        func.replace(_status_key, " ", "", type_=String) == "checkedin",
    )
    return or_(_status_key == GuestStatus.CHECKED_IN.value, spaced)


def _status_condition(status: GuestStatus):
    checked = _checked_in_condition()
    if status == GuestStatus.CHECKED_IN:
        return checked
    return or_(guests_table.c.status.is_(None), not_(checked))


def _guest_conditions(filters: RosterFilters) -> list:
    conditions = []
    if filters.status is not None:
        conditions.append(_status_condition(filters.status))
    if filters.ticket_type:
        conditions.append(guests_table.c.ticket_type == filters.ticket_type)
    return conditions


def _order_clauses(sort_by: str, descending: bool = False) -> list:
    columns = [guests_table.c[name] for name in SORT_FIELDS[sort_by]]
    clauses = [column.desc() if descending else column.asc() for column in columns]
    if sort_by != "id":
        clauses.append(guests_table.c.id.asc())
    return clauses


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into domain errors."""
    try:
        yield
    except IntegrityError as exc:
        logger.warning("Constraint rejected %s: %s", operation, exc.orig)
        raise InvariantViolationError(
            "Update rejected by a storage constraint", details={"operation": operation}
        ) from exc
    except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
        logger.error("Storage failure during %s: %s", operation, exc)
        raise StorageUnavailableError() from exc


class SqlGuestStore(GuestStore):
    """SQLAlchemy-backed store; one session is one unit of work at a time."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def atomic(self):
        try:
            yield self
            with _storage_errors("commit"):
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def get_guest(self, guest_id: str) -> Optional[Dict[str, Any]]:
        with _storage_errors("get_guest"):
            row = self.db.execute(
                select(guests_table).where(guests_table.c.id == guest_id)
            ).mappings().first()
        return dict(row) if row else None

    def conditional_update_guest(self, guest_id: str, expected_version: int, fields: Dict[str, Any]) -> None:
        values = dict(fields)
        values["version"] = guests_table.c.version + 1
        stmt = (
            update(guests_table)
            .where(guests_table.c.id == guest_id, guests_table.c.version == expected_version)
            .values(**values)
        )
        with _storage_errors("conditional_update_guest"):
            result = self.db.execute(stmt)
        if result.rowcount != 1:
            raise VersionConflictError(guest_id)

    def append_ledger_entry(self, entry: Dict[str, Any]) -> None:
        with _storage_errors("append_ledger_entry"):
            self.db.execute(insert(ledger_table).values(**entry))

    def query_guests(
        self, filters: RosterFilters, order_by: str, offset: int, limit: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        conditions = _guest_conditions(filters)
        count_stmt = select(func.count()).select_from(guests_table).where(*conditions)
        page_stmt = (
            select(guests_table)
            .where(*conditions)
            .order_by(*_order_clauses(order_by))
            .offset(offset)
            .limit(limit)
        )
        with _storage_errors("query_guests"):
            total = self.db.execute(count_stmt).scalar_one()
            rows = [dict(row) for row in self.db.execute(page_stmt).mappings()]
        return rows, total

    def scan_guests(self, filters: RosterFilters, after_id: Optional[str], limit: int) -> List[Dict[str, Any]]:
        conditions = _guest_conditions(filters)
        if after_id is not None:
            conditions.append(guests_table.c.id > after_id)
        stmt = select(guests_table).where(*conditions).order_by(guests_table.c.id.asc()).limit(limit)
        with _storage_errors("scan_guests"):
            return [dict(row) for row in self.db.execute(stmt).mappings()]

    def search_guests(
        self, term: str, filters: RosterFilters, sort_by: str, descending: bool, limit: int
    ) -> List[Dict[str, Any]]:
        conditions = _guest_conditions(filters)
        term = term.strip().lower()
        if term:
            full_name = guests_table.c.first_name + " " + guests_table.c.last_name
            searchable = [
                guests_table.c.first_name,
                guests_table.c.last_name,
                guests_table.c.email,
                guests_table.c.phone,
                guests_table.c.id,
                full_name,
            ]
            conditions.append(
                or_(*(func.lower(col, type_=String).contains(term, autoescape=True) for col in searchable))
            )
        stmt = (
            select(guests_table)
            .where(*conditions)
            .order_by(*_order_clauses(sort_by, descending))
            .limit(limit)
        )
        with _storage_errors("search_guests"):
            return [dict(row) for row in self.db.execute(stmt).mappings()]

    def list_ledger_entries(
        self,
        guest_id: Optional[str] = None,
        action: Optional[str] = None,
        performed_by: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Dict[str, Any]], int]:
        conditions = []
        if guest_id:
            conditions.append(ledger_table.c.guest_id == guest_id)
        if action:
            conditions.append(ledger_table.c.action == action)
        if performed_by:
            conditions.append(ledger_table.c.performed_by == performed_by)

        count_stmt = select(func.count()).select_from(ledger_table).where(*conditions)
        page_stmt = (
            select(ledger_table)
            .where(*conditions)
            .order_by(ledger_table.c.timestamp.desc(), ledger_table.c.id.desc())
            .offset(offset)
            .limit(limit)
        )
        with _storage_errors("list_ledger_entries"):
            total = self.db.execute(count_stmt).scalar_one()
            rows = [dict(row) for row in self.db.execute(page_stmt).mappings()]
        return rows, total

    def guest_stats(self, since: datetime) -> Dict[str, Any]:
        checked = _status_condition(GuestStatus.CHECKED_IN)
        overview_stmt = select(
            func.count().label("total"),
            func.coalesce(func.sum(case((checked, 1), else_=0)), 0).label("checked_in"),
            func.coalesce(
                func.sum(case((checked, guests_table.c.plus_ones_checked_in), else_=0)), 0
            ).label("plus_ones"),
        ).select_from(guests_table)
        recent_stmt = (
            select(func.count())
            .select_from(guests_table)
            .where(checked, guests_table.c.check_in_time >= since)
        )
        by_type_stmt = (
            select(
                guests_table.c.ticket_type,
                func.count().label("count"),
                func.coalesce(func.sum(guests_table.c.plus_ones_checked_in), 0).label("plus_ones"),
            )
            .where(checked)
            .group_by(guests_table.c.ticket_type)
            .order_by(func.count().desc(), guests_table.c.ticket_type)
        )
        with _storage_errors("guest_stats"):
            overview = self.db.execute(overview_stmt).mappings().one()
            recent = self.db.execute(recent_stmt).scalar_one()
            by_type = [dict(row) for row in self.db.execute(by_type_stmt).mappings()]

        return {
            "total": int(overview["total"]),
            "checked_in": int(overview["checked_in"]),
            "plus_ones": int(overview["plus_ones"]),
            "checked_in_since": int(recent),
            "by_ticket_type": [
                {
                    "ticket_type": row["ticket_type"],
                    "count": int(row["count"]),
                    "plus_ones": int(row["plus_ones"]),
                }
                for row in by_type
            ],
        }

    def ping(self) -> None:
        with _storage_errors("ping"):
            self.db.execute(select(1)).scalar_one()


# -------- Firestore store --------

# Status spellings matched by equality in Firestore; rows holding any other
# spelling only show up unfiltered.
_STATUS_SPELLINGS = {
    GuestStatus.CHECKED_IN: ["checked_in", "Checked In"],
    GuestStatus.NOT_CHECKED_IN: ["not_checked_in", "Not Checked In"],
}

_TRANSIENT_GOOGLE_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.RetryError,
)


@contextmanager
def _firestore_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except _TRANSIENT_GOOGLE_ERRORS as exc:
        logger.error("Firestore failure during %s: %s", operation, exc)
        raise StorageUnavailableError() from exc


def _sort_value(value: Any) -> Tuple[bool, Any]:
    if isinstance(value, str):
        value = value.lower()
    elif isinstance(value, datetime):
        value = parse_timestamp(value)
    return (value is None, value if value is not None else "")


class FirestoreGuestStore(GuestStore):
    """Firestore-backed store.

    A unit of work is one WriteBatch. Conditional updates carry a
    last-update-time precondition taken from the read, so a concurrent write
    fails the whole batch at commit and nothing is applied.
    """

    def __init__(self, client=None):
        self.client = client or get_firestore_client()
        self._batch = None
        self._writes = 0
        self._read_times: Dict[str, Any] = {}

    @property
    def _guests(self):
        return self.client.collection(settings.FIRESTORE_GUESTS_COLLECTION)

    @property
    def _ledger(self):
        return self.client.collection(settings.FIRESTORE_LEDGER_COLLECTION)

    @staticmethod
    def _row(snapshot) -> Dict[str, Any]:
        data = snapshot.to_dict() or {}
        data["id"] = snapshot.id
        data.setdefault("version", 0)
        return data

    def _require_batch(self):
        if self._batch is None:
            raise RuntimeError("writes must run inside atomic()")
        return self._batch

    @contextmanager
    def atomic(self):
        self._batch = self.client.batch()
        self._writes = 0
        try:
            yield self
            if self._writes:
                try:
                    with _firestore_errors("commit"):
                        self._batch.commit()
                except google_exceptions.FailedPrecondition as exc:
                    raise VersionConflictError(",".join(self._read_times) or "<unknown>") from exc
        finally:
            self._batch = None
            self._writes = 0
            self._read_times.clear()

    def get_guest(self, guest_id: str) -> Optional[Dict[str, Any]]:
        with _firestore_errors("get_guest"):
            snapshot = self._guests.document(guest_id).get()
        if not snapshot.exists:
            return None
        self._read_times[guest_id] = snapshot.update_time
        return self._row(snapshot)

    def conditional_update_guest(self, guest_id: str, expected_version: int, fields: Dict[str, Any]) -> None:
        batch = self._require_batch()
        read_time = self._read_times.get(guest_id)
        if read_time is None:
            raise VersionConflictError(guest_id)
        payload = dict(fields)
        payload["version"] = expected_version + 1
        batch.update(
            self._guests.document(guest_id),
            payload,
            option=self.client.write_option(last_update_time=read_time),
        )
        self._writes += 1

    def append_ledger_entry(self, entry: Dict[str, Any]) -> None:
        batch = self._require_batch()
        batch.create(self._ledger.document(), dict(entry))
        self._writes += 1

    def _filtered_query(self, filters: RosterFilters):
        query = self._guests
        if filters.ticket_type:
            query = query.where(filter=FieldFilter("ticket_type", "==", filters.ticket_type))
        if filters.status is not None:
            query = query.where(filter=FieldFilter("status", "in", _STATUS_SPELLINGS[filters.status]))
        return query

    def query_guests(
        self, filters: RosterFilters, order_by: str, offset: int, limit: int
    ) -> Tuple[List[Dict[str, Any]], int]:
        query = self._filtered_query(filters)
        for name in SORT_FIELDS[order_by]:
            if name != "id":
                query = query.order_by(name)
        query = query.order_by(FieldPath.document_id())
        with _firestore_errors("query_guests"):
            total = query.count().get()[0][0].value
            rows = [self._row(snapshot) for snapshot in query.offset(offset).limit(limit).stream()]
        return rows, int(total)

    def scan_guests(self, filters: RosterFilters, after_id: Optional[str], limit: int) -> List[Dict[str, Any]]:
        query = self._filtered_query(filters)
        if after_id is not None:
            query = query.where(
                filter=FieldFilter(FieldPath.document_id(), ">", self._guests.document(after_id))
            )
        query = query.order_by(FieldPath.document_id()).limit(limit)
        with _firestore_errors("scan_guests"):
            return [self._row(snapshot) for snapshot in query.stream()]

    def search_guests(
        self, term: str, filters: RosterFilters, sort_by: str, descending: bool, limit: int
    ) -> List[Dict[str, Any]]:
        term = term.strip().lower()
        with _firestore_errors("search_guests"):
            rows = [self._row(snapshot) for snapshot in self._filtered_query(filters).stream()]

        def matches(row: Dict[str, Any]) -> bool:
            first, last = row.get("first_name") or "", row.get("last_name") or ""
            haystack = [first, last, f"{first} {last}", row.get("email") or "", row.get("phone") or "", row["id"]]
            return any(term in str(value).lower() for value in haystack)

        if term:
            rows = [row for row in rows if matches(row)]
        rows.sort(key=lambda row: row["id"])
        rows.sort(
            key=lambda row: tuple(_sort_value(row.get(name)) for name in SORT_FIELDS[sort_by]),
            reverse=descending,
        )
        return rows[:limit]

    def list_ledger_entries(
        self,
        guest_id: Optional[str] = None,
        action: Optional[str] = None,
        performed_by: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Dict[str, Any]], int]:
        query = self._ledger
        if guest_id:
            query = query.where(filter=FieldFilter("guest_id", "==", guest_id))
        if action:
            query = query.where(filter=FieldFilter("action", "==", action))
        if performed_by:
            query = query.where(filter=FieldFilter("performed_by", "==", performed_by))
        query = query.order_by("timestamp", direction="DESCENDING")
        with _firestore_errors("list_ledger_entries"):
            total = query.count().get()[0][0].value
            rows = []
            for snapshot in query.offset(offset).limit(limit).stream():
                row = snapshot.to_dict() or {}
                row["id"] = snapshot.id
                rows.append(row)
        return rows, int(total)

    def guest_stats(self, since: datetime) -> Dict[str, Any]:
        with _firestore_errors("guest_stats"):
            rows = [self._row(snapshot) for snapshot in self._guests.stream()]

        checked = [row for row in rows if normalize_status(row.get("status")) == GuestStatus.CHECKED_IN]
        by_type: Dict[str, Dict[str, Any]] = {}
        recent = 0
        for row in checked:
            ticket_type = row.get("ticket_type") or "General"
            bucket = by_type.setdefault(ticket_type, {"ticket_type": ticket_type, "count": 0, "plus_ones": 0})
            bucket["count"] += 1
            bucket["plus_ones"] += int(row.get("plus_ones_checked_in") or 0)
            checked_at = parse_timestamp(row.get("check_in_time"))
            if checked_at is not None and checked_at >= since:
                recent += 1

        return {
            "total": len(rows),
            "checked_in": len(checked),
            "plus_ones": sum(bucket["plus_ones"] for bucket in by_type.values()),
            "checked_in_since": recent,
            "by_ticket_type": sorted(by_type.values(), key=lambda b: (-b["count"], b["ticket_type"])),
        }

    def ping(self) -> None:
        with _firestore_errors("ping"):
            list(self._guests.limit(1).stream())
