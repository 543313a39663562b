"""
Check-in ledger model
"""

from datetime import datetime
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from guestlist.core.db import Base

class CheckInLogEntry(Base):
    """Append-only audit record; rows are never updated or deleted"""
    __tablename__ = "check_in_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    guest_id = Column(String(36), ForeignKey("guests.id", ondelete="SET NULL"), index=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    performed_by = Column(String(100), nullable=False)
    plus_ones_at_check_in = Column(Integer, nullable=False, default=0)
    action = Column(String(50), nullable=False, index=True)
    guest_name = Column(String(200))
    notes = Column(Text)
    confirmation_code = Column(String(255))
