"""
Database models package
"""

from .guest import Guest
from .check_in_log import CheckInLogEntry

__all__ = ["Guest", "CheckInLogEntry"]
