"""
Pydantic schemas package
"""

from .common import *
from .guest import *

__all__ = [
    "StandardResponse",
    "ErrorResponse",
    "UNKNOWN_TIMESTAMP",
    "GuestStatus",
    "CheckInAction",
    "GuestView",
    "GuestDetail",
    "LedgerEntryView",
    "RosterFilters",
    "RosterPage",
    "LedgerPage",
    "CheckInRequest",
    "BulkCheckInItem",
    "BulkCheckInRequest",
    "SearchRequest",
]
