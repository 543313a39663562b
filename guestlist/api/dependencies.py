"""
Request-scoped service wiring
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from guestlist.core.db import get_db
from guestlist.services.checkin_service import CheckInService
from guestlist.services.repositories import FirestoreGuestStore, GuestStore, SqlGuestStore, use_firestore
from guestlist.services.roster_service import RosterService

def get_guest_store(db: Session = Depends(get_db)) -> GuestStore:
    """One store per request, backed by the configured storage"""
    if use_firestore():
        return FirestoreGuestStore()
    return SqlGuestStore(db)

def get_checkin_service(store: GuestStore = Depends(get_guest_store)) -> CheckInService:
    return CheckInService(store)

def get_roster_service(store: GuestStore = Depends(get_guest_store)) -> RosterService:
    return RosterService(store)
