"""
Guest-related Pydantic schemas
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

UNKNOWN_TIMESTAMP = "unknown"

class GuestStatus(str, Enum):
    """Canonical check-in status"""
    NOT_CHECKED_IN = "not_checked_in"
    CHECKED_IN = "checked_in"

class CheckInAction(str, Enum):
    """Ledger entry actions"""
    CHECK_IN = "check_in"
    BULK_CHECK_IN = "bulk_check_in"
    UNDO_CHECK_IN = "undo_check_in"

class CamelModel(BaseModel):
    """Base model serialized with camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class GuestView(CamelModel):
    """Canonical guest view shared by the read and write paths"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    first_name: str
    last_name: str
    full_name: str
    email: str
    phone: str
    ticket_type: str
    plus_ones_allowed: int
    plus_ones_checked_in: int
    plus_ones_remaining: int
    status: GuestStatus
    check_in_time: str
    checked_in_by: Optional[str] = None
    confirmation_code: str
    notes: str
    created_at: str
    last_modified: str

class LedgerEntryView(CamelModel):
    """One check-in ledger entry"""
    id: str
    guest_id: Optional[str] = None
    timestamp: str
    performed_by: str
    plus_ones_at_check_in: int
    action: str
    guest_name: str = ""
    notes: str = ""
    confirmation_code: str = ""

class GuestDetail(GuestView):
    """Guest view with its ledger history, newest first"""
    history: List[LedgerEntryView] = []

class RosterFilters(CamelModel):
    """Validated roster filters; None means no constraint"""
    status: Optional[GuestStatus] = None
    ticket_type: Optional[str] = None

class RosterPage(CamelModel):
    """One page of the roster"""
    items: List[GuestView]
    page: int
    page_size: int
    total_pages: int
    total_items: int

class LedgerPage(CamelModel):
    """One page of the audit log"""
    items: List[LedgerEntryView]
    page: int
    page_size: int
    total_pages: int
    total_items: int

class CheckInRequest(CamelModel):
    """Guest check-in request; plusOnes null means all remaining"""
    plus_ones: Optional[int] = 0
    notes: Optional[str] = None

class BulkCheckInItem(CamelModel):
    """One entry of a bulk check-in"""
    guest_id: str
    plus_ones: Optional[int] = 0

class BulkCheckInRequest(CamelModel):
    """Bulk check-in request"""
    guests: List[BulkCheckInItem]
    notes: Optional[str] = None

class SearchRequest(CamelModel):
    """Guest search request"""
    query: str = ""
    status: Optional[str] = None
    ticket_type: Optional[str] = None
    sort_by: str = "name"
    sort_order: str = "asc"
