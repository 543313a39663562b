"""
Guest model
"""

from datetime import datetime
from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text

from guestlist.core.db import Base
from guestlist.schemas.guest import GuestStatus

class Guest(Base):
    __tablename__ = "guests"

    id = Column(String(36), primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), index=True)
    phone = Column(String(20))
    ticket_type = Column(String(50), nullable=False, default="General")
    plus_ones_allowed = Column(Integer, nullable=False, default=0)
    plus_ones_checked_in = Column(Integer, nullable=False, default=0)
    # Legacy rows may hold "Checked In" / "Not Checked In"
    status = Column(String(50), default=GuestStatus.NOT_CHECKED_IN.value, index=True)
    check_in_time = Column(DateTime, index=True)
    checked_in_by = Column(String(100))
    confirmation_code = Column(String(255), index=True)
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_modified = Column(DateTime, nullable=False, default=datetime.utcnow)
    # Bumped on every mutation; conditional updates compare against it
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint(
            "plus_ones_checked_in >= 0 AND plus_ones_checked_in <= plus_ones_allowed",
            name="chk_plus_ones_count",
        ),
        Index("idx_guests_name", "last_name", "first_name"),
    )
