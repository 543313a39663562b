"""
Guest check-in service: the ledger state machine
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from guestlist.core.config import settings
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
from guestlist.schemas.guest import BulkCheckInItem, CheckInAction, GuestStatus, GuestView
from guestlist.services.normalization import normalize, parse_timestamp
from guestlist.services.repositories import GuestStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{field} is required", field=field)
    return value.strip()


def _validate_plus_ones(value: Any, field: str = "plusOnes") -> Optional[int]:
    """None means "all remaining"; anything else must be a non-negative int."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidInputError(f"{field} must be a non-negative integer", field=field)
    return value


class CheckInService:
    """Validates and applies check-ins against the guest store.

    Each operation reads the guest, validates, then writes the guest update
    and its ledger entry inside one store.atomic() unit. The update is
    conditional on the version read, so a concurrent writer on the same guest
    makes it fail; the unit is then rolled back and replayed against the
    fresh row, up to `max_attempts` times.
    """

    def __init__(
        self,
        store: GuestStore,
        max_attempts: Optional[int] = None,
        undo_window_seconds: Optional[int] = None,
        max_bulk_size: Optional[int] = None,
    ):
        self.store = store
        self.max_attempts = max_attempts or settings.CHECKIN_MAX_ATTEMPTS
        self.undo_window_seconds = (
            settings.UNDO_WINDOW_SECONDS if undo_window_seconds is None else undo_window_seconds
        )
        self.max_bulk_size = max_bulk_size or settings.MAX_BULK_SIZE

    def check_in(
        self,
        guest_id: str,
        performed_by: str,
        plus_ones: Optional[int] = 0,
        notes: Optional[str] = None,
    ) -> GuestView:
        """Check a guest in, or top up their plus-ones.

        Re-scanning an already checked-in guest with plus_ones=0 returns the
        current view without writing anything.
        """
        guest_id = _require_text(guest_id, "guestId")
        performed_by = _require_text(performed_by, "performedBy")
        plus_ones = _validate_plus_ones(plus_ones)

        return self._run_atomic(
            guest_id,
            lambda: self._apply_check_in(guest_id, performed_by, plus_ones, notes, CheckInAction.CHECK_IN),
        )

    def undo_check_in(self, guest_id: str, performed_by: str, notes: Optional[str] = None) -> GuestView:
        """Revert a check-in made within the undo window."""
        guest_id = _require_text(guest_id, "guestId")
        performed_by = _require_text(performed_by, "performedBy")

        return self._run_atomic(guest_id, lambda: self._apply_undo(guest_id, performed_by, notes))

    def bulk_check_in(
        self,
        items: Sequence[BulkCheckInItem],
        performed_by: str,
        notes: Optional[str] = None,
    ) -> List[GuestView]:
        """Check in several guests as one all-or-nothing unit."""
        performed_by = _require_text(performed_by, "performedBy")
        if not items:
            raise InvalidInputError("guests array cannot be empty", field="guests")
        if len(items) > self.max_bulk_size:
            raise InvalidInputError(
                f"Cannot check in more than {self.max_bulk_size} guests at once",
                details={"requested": len(items), "maximum": self.max_bulk_size},
            )

        requests = []
        seen = set()
        for index, item in enumerate(items):
            if not isinstance(item.guest_id, str) or not item.guest_id.strip():
                raise InvalidInputError(f"Guest at index {index} is missing guestId", details={"index": index})
            guest_id = item.guest_id.strip()
            if guest_id in seen:
                raise InvalidInputError(
                    f"Guest '{guest_id}' appears more than once", details={"index": index, "guestId": guest_id}
                )
            seen.add(guest_id)
            try:
                plus_ones = _validate_plus_ones(item.plus_ones)
            except InvalidInputError:
                raise InvalidInputError(
                    f"Guest at index {index} has invalid plusOnes value",
                    details={"index": index, "value": item.plus_ones},
                ) from None
            requests.append((guest_id, plus_ones))

        def unit() -> List[GuestView]:
            views, failures = [], []
            for guest_id, plus_ones in requests:
                try:
                    views.append(
                        self._apply_check_in(guest_id, performed_by, plus_ones, notes, CheckInAction.BULK_CHECK_IN)
                    )
                except (NotFoundError, InvariantViolationError) as exc:
                    failures.append({"guestId": guest_id, "code": exc.code.value, "message": exc.message})
            if failures:
                raise BulkCheckInRejectedError(failures)
            return views

        views = self._run_atomic("bulk", unit)
        logger.info("Bulk check-in of %d guests by %s", len(views), performed_by)
        return views

    def _run_atomic(self, label: str, unit: Callable[[], T]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                with self.store.atomic():
                    return unit()
            except VersionConflictError as exc:
                logger.warning(
                    "Concurrent update on guest %s, retrying (attempt %d/%d)",
                    exc.guest_id, attempt, self.max_attempts,
                )
        logger.error("Gave up on %s after %d conflicting attempts", label, self.max_attempts)
        raise StorageUnavailableError("Guest is being updated concurrently. Please retry.")

    def _load(self, guest_id: str) -> Dict[str, Any]:
        row = self.store.get_guest(guest_id)
        if row is None:
            raise NotFoundError(guest_id)
        return row

    def _apply_check_in(
        self,
        guest_id: str,
        performed_by: str,
        plus_ones: Optional[int],
        notes: Optional[str],
        action: CheckInAction,
    ) -> GuestView:
        row = self._load(guest_id)
        current = normalize(row)
        requested = current.plus_ones_remaining if plus_ones is None else plus_ones
        already_checked_in = current.status == GuestStatus.CHECKED_IN

        if already_checked_in and requested == 0:
            logger.info("Guest %s re-scanned by %s, already checked in", guest_id, performed_by)
            return current

        new_count = current.plus_ones_checked_in + requested
        if new_count > current.plus_ones_allowed:
            raise InvariantViolationError(
                f"Guest is only allowed {current.plus_ones_allowed} plus ones, "
                f"{current.plus_ones_checked_in} already checked in, {requested} requested",
                details={
                    "allowed": current.plus_ones_allowed,
                    "checkedIn": current.plus_ones_checked_in,
                    "requested": requested,
                },
            )

        now = datetime.utcnow()
        fields: Dict[str, Any] = {
            "status": GuestStatus.CHECKED_IN.value,
            "plus_ones_checked_in": new_count,
            "last_modified": now,
        }
        if not already_checked_in:
            fields["check_in_time"] = now
            fields["checked_in_by"] = performed_by

        self.store.conditional_update_guest(guest_id, row["version"], fields)
        self.store.append_ledger_entry({
            "guest_id": guest_id,
            "timestamp": now,
            "performed_by": performed_by,
            "plus_ones_at_check_in": new_count,
            "action": action.value,
            "guest_name": current.full_name,
            "notes": notes,
            "confirmation_code": current.confirmation_code or None,
        })

        logger.info(
            "Guest %s checked in by %s (+%d plus ones, %d/%d)",
            guest_id, performed_by, requested, new_count, current.plus_ones_allowed,
        )
        return normalize({**row, **fields, "version": row["version"] + 1})

    def _apply_undo(self, guest_id: str, performed_by: str, notes: Optional[str]) -> GuestView:
        row = self._load(guest_id)
        current = normalize(row)
        if current.status != GuestStatus.CHECKED_IN:
            raise InvariantViolationError(
                "Guest is not checked in",
                details={"currentStatus": current.status.value},
                code=ErrorCode.NOT_CHECKED_IN,
            )

        checked_in_at = parse_timestamp(row.get("check_in_time"))
        if checked_in_at is None:
            raise InvariantViolationError(
                "Guest has no valid check-in time", code=ErrorCode.NOT_CHECKED_IN
            )

        now = datetime.utcnow()
        elapsed = (now - checked_in_at).total_seconds()
        if elapsed > self.undo_window_seconds:
            logger.warning(
                "Undo for guest %s by %s refused after %d seconds", guest_id, performed_by, int(elapsed)
            )
            raise UndoWindowExpiredError(int(elapsed), self.undo_window_seconds)

        fields = {
            "status": GuestStatus.NOT_CHECKED_IN.value,
            "plus_ones_checked_in": 0,
            "check_in_time": None,
            "checked_in_by": None,
            "last_modified": now,
        }
        self.store.conditional_update_guest(guest_id, row["version"], fields)
        # Undo entries record the plus-ones count that was reverted
        self.store.append_ledger_entry({
            "guest_id": guest_id,
            "timestamp": now,
            "performed_by": performed_by,
            "plus_ones_at_check_in": current.plus_ones_checked_in,
            "action": CheckInAction.UNDO_CHECK_IN.value,
            "guest_name": current.full_name,
            "notes": notes,
            "confirmation_code": current.confirmation_code or None,
        })

        logger.info("Check-in of guest %s undone by %s", guest_id, performed_by)
        return normalize({**row, **fields, "version": row["version"] + 1})
