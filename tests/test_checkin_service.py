"""
Tests for the check-in service
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from guestlist.core.errors import (
    BulkCheckInRejectedError,
    ErrorCode,
    InvalidInputError,
    InvariantViolationError,
    NotFoundError,
    StorageUnavailableError,
    UndoWindowExpiredError,
    VersionConflictError,
)
from guestlist.models import CheckInLogEntry, Guest
from guestlist.schemas.guest import UNKNOWN_TIMESTAMP, BulkCheckInItem, GuestStatus, GuestView
from guestlist.services.checkin_service import CheckInService
from guestlist.services.repositories import SqlGuestStore

def _ledger(db_session):
    db_session.expire_all()
    return db_session.query(CheckInLogEntry).order_by(CheckInLogEntry.id).all()

def _stored(db_session, guest_id):
    db_session.expire_all()
    return db_session.get(Guest, guest_id)

OLD_STAMP = datetime(2024, 1, 1, 12, 0)

def _backdate(db_session, guest_id):
    guests = Guest.__table__
    db_session.execute(update(guests).where(guests.c.id == guest_id).values(last_modified=OLD_STAMP))
    db_session.commit()

def test_last_modified_moves_on_every_mutation(store, add_guest, db_session):
    """Check-in, top-up and undo bump last_modified; a re-scan leaves it alone"""
    add_guest("G1", plus_ones_allowed=2, created_at=OLD_STAMP, last_modified=OLD_STAMP)
    service = CheckInService(store)

    view = service.check_in("G1", "usher-A", 0)
    after_check_in = _stored(db_session, "G1").last_modified
    assert after_check_in > OLD_STAMP
    assert view.last_modified == after_check_in.isoformat()

    service.check_in("G1", "usher-B", 0)
    assert _stored(db_session, "G1").last_modified == after_check_in

    _backdate(db_session, "G1")
    service.check_in("G1", "usher-B", 1)
    assert _stored(db_session, "G1").last_modified > OLD_STAMP

    _backdate(db_session, "G1")
    service.undo_check_in("G1", "usher-A")
    guest = _stored(db_session, "G1")
    assert guest.last_modified > OLD_STAMP
    assert guest.last_modified >= guest.created_at

def test_first_check_in(store, add_guest, db_session):
    """First check-in records arrival and writes one ledger entry"""
    add_guest("G1", first_name="Ada", last_name="Lovelace", plus_ones_allowed=2, confirmation_code="CONF-1")

    view = CheckInService(store).check_in("G1", "usher-A", 1, notes="Arrived early")

    assert view.status == GuestStatus.CHECKED_IN
    assert view.plus_ones_checked_in == 1
    assert view.plus_ones_remaining == 1
    assert view.checked_in_by == "usher-A"
    assert view.check_in_time != UNKNOWN_TIMESTAMP

    guest = _stored(db_session, "G1")
    assert guest.status == "checked_in"
    assert guest.plus_ones_checked_in == 1
    assert guest.version == 2

    entries = _ledger(db_session)
    assert len(entries) == 1
    assert entries[0].guest_id == "G1"
    assert entries[0].performed_by == "usher-A"
    assert entries[0].plus_ones_at_check_in == 1
    assert entries[0].action == "check_in"
    assert entries[0].guest_name == "Ada Lovelace"
    assert entries[0].notes == "Arrived early"
    assert entries[0].confirmation_code == "CONF-1"

def test_rescan_is_idempotent(store, add_guest, db_session):
    """Scanning a checked-in guest again changes nothing"""
    add_guest("G1", plus_ones_allowed=1)
    service = CheckInService(store)

    first = service.check_in("G1", "usher-A", 0)
    second = service.check_in("G1", "usher-B", 0)

    assert second.check_in_time == first.check_in_time
    assert second.checked_in_by == "usher-A"
    assert len(_ledger(db_session)) == 1
    assert _stored(db_session, "G1").version == 2

def test_legacy_checked_in_row_is_not_rechecked(store, add_guest, db_session):
    """A row stored as 'Checked In' is already checked in"""
    add_guest("G1", status="Checked In", check_in_time=datetime(2024, 6, 15, 18, 30), checked_in_by="usher-0")

    view = CheckInService(store).check_in("G1", "usher-A")

    assert view.status == GuestStatus.CHECKED_IN
    assert view.check_in_time == "2024-06-15T18:30:00"
    assert _ledger(db_session) == []

def test_top_up_keeps_original_arrival(store, add_guest, db_session):
    """Adding plus-ones later keeps the first arrival time and usher"""
    add_guest("G1", plus_ones_allowed=2)
    service = CheckInService(store)

    first = service.check_in("G1", "usher-A", 0)
    topped = service.check_in("G1", "usher-B", 2)

    assert topped.plus_ones_checked_in == 2
    assert topped.plus_ones_remaining == 0
    assert topped.check_in_time == first.check_in_time
    assert topped.checked_in_by == "usher-A"

    entries = _ledger(db_session)
    assert [e.plus_ones_at_check_in for e in entries] == [0, 2]
    assert entries[1].performed_by == "usher-B"

def test_plus_ones_none_checks_in_all_remaining(store, add_guest):
    """A null plus-ones count admits everyone still outstanding"""
    add_guest("G1", plus_ones_allowed=3, plus_ones_checked_in=1, status="checked_in",
              check_in_time=datetime.utcnow(), checked_in_by="usher-0")

    view = CheckInService(store).check_in("G1", "usher-A", None)

    assert view.plus_ones_checked_in == 3
    assert view.plus_ones_remaining == 0

def test_exceeding_allowance_is_rejected(store, add_guest, db_session):
    """Checking in more plus-ones than allowed fails and writes nothing"""
    add_guest("G1", plus_ones_allowed=1)

    with pytest.raises(InvariantViolationError) as exc_info:
        CheckInService(store).check_in("G1", "usher-A", 2)

    assert exc_info.value.code == ErrorCode.INVARIANT_VIOLATION
    assert exc_info.value.details == {"allowed": 1, "checkedIn": 0, "requested": 2}
    guest = _stored(db_session, "G1")
    assert guest.status == "not_checked_in"
    assert guest.version == 1
    assert _ledger(db_session) == []

def test_unknown_guest(store):
    """A guest id with no record raises NotFoundError"""
    with pytest.raises(NotFoundError) as exc_info:
        CheckInService(store).check_in("NOPE", "usher-A")

    assert exc_info.value.guest_id == "NOPE"

@pytest.mark.parametrize("plus_ones", [-1, True, "2", 1.5])
def test_invalid_plus_ones(store, add_guest, plus_ones):
    """Non-integer or negative plus-ones are rejected before storage"""
    add_guest("G1", plus_ones_allowed=2)

    with pytest.raises(InvalidInputError):
        CheckInService(store).check_in("G1", "usher-A", plus_ones)

@pytest.mark.parametrize("guest_id, usher", [("", "usher-A"), ("  ", "usher-A"), ("G1", ""), (None, "usher-A")])
def test_blank_identifiers(store, guest_id, usher):
    """Guest id and usher are both required"""
    with pytest.raises(InvalidInputError):
        CheckInService(store).check_in(guest_id, usher)

def test_ledger_failure_rolls_back_guest_update(store, add_guest, db_session):
    """If the ledger append fails the guest update is discarded too"""
    add_guest("G1", plus_ones_allowed=2)

    def failing_append(entry):
        raise StorageUnavailableError()

    store.append_ledger_entry = failing_append

    with pytest.raises(StorageUnavailableError):
        CheckInService(store).check_in("G1", "usher-A", 1)

    guest = _stored(db_session, "G1")
    assert guest.status == "not_checked_in"
    assert guest.plus_ones_checked_in == 0
    assert guest.check_in_time is None
    assert guest.version == 1
    assert _ledger(db_session) == []

def test_stale_read_is_revalidated(store, add_guest, db_session, session_factory):
    """A check-in that read before a competing commit re-reads and re-checks"""
    add_guest("G1", plus_ones_allowed=2, plus_ones_checked_in=1, status="checked_in",
              check_in_time=datetime.utcnow(), checked_in_by="usher-0")
    competitor_session = session_factory()
    original_get = store.get_guest
    reads = []

    def racing_get(guest_id):
        row = original_get(guest_id)
        if not reads:
            CheckInService(SqlGuestStore(competitor_session)).check_in(guest_id, "usher-B", 1)
        reads.append(row)
        return row

    store.get_guest = racing_get
    try:
        with pytest.raises(InvariantViolationError):
            CheckInService(store).check_in("G1", "usher-A", 1)
    finally:
        competitor_session.close()

    assert len(reads) == 2
    assert reads[0]["plus_ones_checked_in"] == 1
    assert reads[1]["plus_ones_checked_in"] == 2
    assert _stored(db_session, "G1").plus_ones_checked_in == 2
    entries = _ledger(db_session)
    assert len(entries) == 1
    assert entries[0].performed_by == "usher-B"

def test_concurrent_check_ins_never_overshoot(add_guest, db_session, session_factory):
    """Two ushers racing for the last plus-one: one wins, one is rejected"""
    add_guest("G1", plus_ones_allowed=2, plus_ones_checked_in=1, status="checked_in",
              check_in_time=datetime.utcnow(), checked_in_by="usher-0")
    barrier = threading.Barrier(2)

    def attempt(usher):
        session = session_factory()
        try:
            service = CheckInService(SqlGuestStore(session))
            barrier.wait(timeout=10)
            return service.check_in("G1", usher, 1)
        except InvariantViolationError as exc:
            return exc
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(attempt, usher) for usher in ("usher-A", "usher-B")]
        outcomes = [future.result(timeout=60) for future in futures]

    successes = [o for o in outcomes if isinstance(o, GuestView)]
    failures = [o for o in outcomes if isinstance(o, InvariantViolationError)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert successes[0].plus_ones_checked_in == 2

    assert _stored(db_session, "G1").plus_ones_checked_in == 2
    assert len(_ledger(db_session)) == 1

def test_persistent_conflicts_surface_as_storage_unavailable(store, add_guest, db_session):
    """When every attempt loses the race the caller gets a retryable error"""
    add_guest("G1", plus_ones_allowed=2)
    attempts = []

    def always_conflicting(guest_id, expected_version, fields):
        attempts.append(expected_version)
        raise VersionConflictError(guest_id)

    store.conditional_update_guest = always_conflicting

    with pytest.raises(StorageUnavailableError) as exc_info:
        CheckInService(store, max_attempts=3).check_in("G1", "usher-A", 1)

    assert exc_info.value.retryable is True
    assert len(attempts) == 3
    assert _ledger(db_session) == []

def test_undo_within_window(store, add_guest, db_session):
    """A fresh check-in can be undone"""
    add_guest("G1", plus_ones_allowed=2)
    service = CheckInService(store)
    service.check_in("G1", "usher-A", 2)

    view = service.undo_check_in("G1", "usher-A", notes="Wrong guest")

    assert view.status == GuestStatus.NOT_CHECKED_IN
    assert view.plus_ones_checked_in == 0
    assert view.check_in_time == UNKNOWN_TIMESTAMP
    assert view.checked_in_by is None

    guest = _stored(db_session, "G1")
    assert guest.status == "not_checked_in"
    assert guest.check_in_time is None
    assert guest.version == 3

    entries = _ledger(db_session)
    assert [e.action for e in entries] == ["check_in", "undo_check_in"]
    assert entries[1].plus_ones_at_check_in == 2
    assert entries[1].notes == "Wrong guest"

def test_undo_after_window(store, add_guest, db_session):
    """An old check-in can no longer be undone"""
    add_guest("G1", status="checked_in", check_in_time=datetime.utcnow() - timedelta(minutes=5),
              checked_in_by="usher-0")

    with pytest.raises(UndoWindowExpiredError) as exc_info:
        CheckInService(store, undo_window_seconds=30).undo_check_in("G1", "usher-A")

    assert exc_info.value.code == ErrorCode.UNDO_WINDOW_EXPIRED
    assert exc_info.value.details["maxAllowedSeconds"] == 30
    assert _stored(db_session, "G1").status == "checked_in"
    assert _ledger(db_session) == []

def test_undo_when_not_checked_in(store, add_guest):
    """Undo requires a checked-in guest"""
    add_guest("G1")

    with pytest.raises(InvariantViolationError) as exc_info:
        CheckInService(store).undo_check_in("G1", "usher-A")

    assert exc_info.value.code == ErrorCode.NOT_CHECKED_IN

def test_bulk_check_in(store, add_guest, db_session):
    """Bulk check-in applies every entry and logs each one"""
    add_guest("G1", plus_ones_allowed=1)
    add_guest("G2")
    add_guest("G3", plus_ones_allowed=2)
    items = [
        BulkCheckInItem(guest_id="G1", plus_ones=1),
        BulkCheckInItem(guest_id="G2"),
        BulkCheckInItem(guest_id="G3", plus_ones=None),
    ]

    views = CheckInService(store).bulk_check_in(items, "usher-A", notes="Coach party")

    assert [v.id for v in views] == ["G1", "G2", "G3"]
    assert all(v.status == GuestStatus.CHECKED_IN for v in views)
    assert views[2].plus_ones_checked_in == 2

    entries = _ledger(db_session)
    assert len(entries) == 3
    assert {e.action for e in entries} == {"bulk_check_in"}
    assert {e.notes for e in entries} == {"Coach party"}

def test_bulk_check_in_is_all_or_nothing(store, add_guest, db_session):
    """One failing entry rejects the whole batch"""
    add_guest("G1", plus_ones_allowed=1)
    add_guest("G2")
    items = [
        BulkCheckInItem(guest_id="G1", plus_ones=1),
        BulkCheckInItem(guest_id="G2", plus_ones=3),
        BulkCheckInItem(guest_id="MISSING"),
    ]

    with pytest.raises(BulkCheckInRejectedError) as exc_info:
        CheckInService(store).bulk_check_in(items, "usher-A")

    failures = exc_info.value.failures
    assert [f["guestId"] for f in failures] == ["G2", "MISSING"]
    assert [f["code"] for f in failures] == ["INVARIANT_VIOLATION", "NOT_FOUND"]

    assert _stored(db_session, "G1").status == "not_checked_in"
    assert _stored(db_session, "G1").version == 1
    assert _ledger(db_session) == []

def test_bulk_check_in_rejects_bad_requests(store, add_guest):
    """Empty, oversized, duplicated or malformed batches fail validation"""
    add_guest("G1")
    add_guest("G2")
    add_guest("G3")
    service = CheckInService(store, max_bulk_size=2)

    with pytest.raises(InvalidInputError):
        service.bulk_check_in([], "usher-A")
    with pytest.raises(InvalidInputError):
        service.bulk_check_in([BulkCheckInItem(guest_id=g) for g in ("G1", "G2", "G3")], "usher-A")
    with pytest.raises(InvalidInputError):
        service.bulk_check_in([BulkCheckInItem(guest_id="G1"), BulkCheckInItem(guest_id="G1")], "usher-A")
    with pytest.raises(InvalidInputError):
        service.bulk_check_in([BulkCheckInItem(guest_id="G1", plus_ones=-1)], "usher-A")
