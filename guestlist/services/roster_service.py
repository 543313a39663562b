"""
Roster query service: filtered, paginated guest listings and audit views
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional

from guestlist.core.config import settings
from guestlist.core.errors import InvalidInputError, NotFoundError
from guestlist.schemas.guest import GuestDetail, GuestStatus, GuestView, LedgerPage, RosterFilters, RosterPage
from guestlist.services.normalization import normalize, normalize_ledger_entry
from guestlist.services.repositories import GuestStore

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

SEARCH_SORT_FIELDS = ("name", "check_in_time", "ticket_type")
SORT_ORDERS = ("asc", "desc")


def _total_pages(total: int, page_size: int) -> int:
    return (total + page_size - 1) // page_size


def _validate_page(page: Any, page_size: Any, maximum: int) -> None:
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise InvalidInputError("page must be a positive integer", field="page")
    if isinstance(page_size, bool) or not isinstance(page_size, int) or not 1 <= page_size <= maximum:
        raise InvalidInputError(f"pageSize must be between 1 and {maximum}", field="pageSize")


class RosterService:
    """Read path over the guest store.

    Pages are ordered by guest id (or by name with id as tie-break) so
    concatenating pages never skips or repeats a guest. The total and the page
    come from two reads in the same session: under concurrent check-ins the
    count may be one write behind the page.
    """

    def __init__(self, store: GuestStore):
        self.store = store

    @staticmethod
    def build_filters(status: Optional[str] = None, ticket_type: Optional[str] = None) -> RosterFilters:
        """Validate raw filter values; empty means no constraint."""
        status_value = None
        if status is not None and str(status).strip():
            key = _WHITESPACE.sub("_", str(status).strip().lower())
            try:
                status_value = GuestStatus(key)
            except ValueError:
                raise InvalidInputError(
                    f"Unknown status filter '{status}'",
                    details={"field": "status", "allowed": [s.value for s in GuestStatus]},
                ) from None

        ticket_value = None
        if ticket_type is not None and str(ticket_type).strip():
            known = {t.lower(): t for t in settings.TICKET_TYPES}
            ticket_value = known.get(str(ticket_type).strip().lower())
            if ticket_value is None:
                raise InvalidInputError(
                    f"Unknown ticket type filter '{ticket_type}'",
                    details={"field": "ticketType", "allowed": list(settings.TICKET_TYPES)},
                )

        return RosterFilters(status=status_value, ticket_type=ticket_value)

    def list_guests(
        self,
        filters: Optional[RosterFilters] = None,
        page: int = 1,
        page_size: Optional[int] = None,
        order_by: str = "id",
    ) -> RosterPage:
        filters = filters or RosterFilters()
        page_size = settings.DEFAULT_PAGE_SIZE if page_size is None else page_size
        _validate_page(page, page_size, settings.MAX_PAGE_SIZE)
        if order_by not in ("id", "name"):
            raise InvalidInputError(f"Unknown ordering '{order_by}'", field="orderBy")

        rows, total = self.store.query_guests(filters, order_by, (page - 1) * page_size, page_size)
        logger.info(
            "Roster page %d/%d fetched (%d of %d guests, filters=%s)",
            page, _total_pages(total, page_size), len(rows), total, filters.model_dump(exclude_none=True),
        )
        return RosterPage(
            items=[normalize(row) for row in rows],
            page=page,
            page_size=page_size,
            total_pages=_total_pages(total, page_size),
            total_items=total,
        )

    def iter_guests(self, filters: Optional[RosterFilters] = None) -> Iterator[GuestView]:
        """Walk the whole filtered roster in id order.

        Batches continue after the last id seen, so a guest checked in while
        the walk is running never makes a later guest drop out.
        """
        filters = filters or RosterFilters()
        batch_size = settings.MAX_PAGE_SIZE
        after_id = None
        while True:
            rows = self.store.scan_guests(filters, after_id, batch_size)
            for row in rows:
                yield normalize(row)
            if len(rows) < batch_size:
                return
            after_id = rows[-1]["id"]

    def get_guest(self, guest_id: str) -> GuestDetail:
        """Guest view with ledger history, newest first"""
        if not isinstance(guest_id, str) or not guest_id.strip():
            raise InvalidInputError("Valid guest ID is required", field="guestId")
        guest_id = guest_id.strip()

        row = self.store.get_guest(guest_id)
        if row is None:
            raise NotFoundError(guest_id)
        entries, _ = self.store.list_ledger_entries(guest_id=guest_id, limit=settings.MAX_LEDGER_PAGE_SIZE)
        view = normalize(row)
        return GuestDetail(**view.model_dump(), history=[normalize_ledger_entry(e) for e in entries])

    def search_guests(
        self,
        query: str = "",
        filters: Optional[RosterFilters] = None,
        sort_by: str = "name",
        sort_order: str = "asc",
    ) -> List[GuestView]:
        """Substring search over name, email, phone and id"""
        if sort_by not in SEARCH_SORT_FIELDS:
            raise InvalidInputError(
                f"Unknown sort field '{sort_by}'", details={"field": "sortBy", "allowed": list(SEARCH_SORT_FIELDS)}
            )
        order = (sort_order or "asc").lower()
        if order not in SORT_ORDERS:
            raise InvalidInputError(f"Unknown sort order '{sort_order}'", field="sortOrder")

        rows = self.store.search_guests(
            query or "", filters or RosterFilters(), sort_by, order == "desc", settings.SEARCH_RESULT_LIMIT
        )
        logger.info("Guest search for %r returned %d rows", query, len(rows))
        return [normalize(row) for row in rows]

    def list_ledger(
        self,
        guest_id: Optional[str] = None,
        action: Optional[str] = None,
        performed_by: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> LedgerPage:
        """Paginated audit log, newest first"""
        page_size = settings.DEFAULT_PAGE_SIZE if page_size is None else page_size
        _validate_page(page, page_size, settings.MAX_LEDGER_PAGE_SIZE)

        rows, total = self.store.list_ledger_entries(
            guest_id=guest_id or None,
            action=action or None,
            performed_by=performed_by or None,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return LedgerPage(
            items=[normalize_ledger_entry(row) for row in rows],
            page=page,
            page_size=page_size,
            total_pages=_total_pages(total, page_size),
            total_items=total,
        )

    def get_stats(self) -> Dict[str, Any]:
        """Check-in totals and breakdowns for the admin dashboard"""
        now = datetime.utcnow()
        stats = self.store.guest_stats(since=now - timedelta(hours=1))

        total = stats["total"]
        checked_in = stats["checked_in"]
        return {
            "overview": {
                "totalGuests": total,
                "checkedIn": checked_in,
                "notCheckedIn": total - checked_in,
                "checkInPercentage": round(checked_in * 100 / total) if total else 0,
                "totalPlusOnes": stats["plus_ones"],
                "totalAttendees": checked_in + stats["plus_ones"],
            },
            "recent": {"lastHour": stats["checked_in_since"]},
            "byTicketType": [
                {
                    "ticketType": row["ticket_type"],
                    "count": row["count"],
                    "plusOnes": row["plus_ones"],
                    "total": row["count"] + row["plus_ones"],
                }
                for row in stats["by_ticket_type"]
            ],
            "generatedAt": now.isoformat(),
        }
