"""
Usher-facing guest API routes
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from guestlist.api.dependencies import get_checkin_service, get_roster_service
from guestlist.schemas.guest import BulkCheckInRequest, CheckInRequest, SearchRequest
from guestlist.services.checkin_service import CheckInService
from guestlist.services.qr_service import QRService
from guestlist.services.roster_service import RosterService
from guestlist.utils.responses import success_response
from guestlist.utils.security import enforce_rate_limit, get_current_usher

router = APIRouter()

@router.get("")
def list_guests(
    status: Optional[str] = Query(None),
    ticket_type: Optional[str] = Query(None, alias="ticketType"),
    page: int = Query(1),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    order_by: str = Query("id", alias="orderBy"),
    usher: str = Depends(get_current_usher),
    roster: RosterService = Depends(get_roster_service)
):
    """Paginated roster with optional status / ticket type filters"""
    filters = roster.build_filters(status=status, ticket_type=ticket_type)
    result = roster.list_guests(filters, page=page, page_size=page_size, order_by=order_by)

    return success_response(
        message="Guests retrieved successfully",
        data=result.model_dump(by_alias=True, mode="json")
    )

@router.post("/search")
def search_guests(
    search: SearchRequest,
    usher: str = Depends(get_current_usher),
    roster: RosterService = Depends(get_roster_service)
):
    """Search guests by name, email, phone or id"""
    filters = roster.build_filters(status=search.status, ticket_type=search.ticket_type)
    guests = roster.search_guests(
        query=search.query,
        filters=filters,
        sort_by=search.sort_by,
        sort_order=search.sort_order
    )

    return success_response(
        message=f"{len(guests)} guest(s) found",
        data={
            "guests": [guest.model_dump(by_alias=True, mode="json") for guest in guests],
            "total": len(guests),
            "query": search.query
        }
    )

@router.post("/bulk-check-in", dependencies=[Depends(enforce_rate_limit)])
def bulk_check_in(
    bulk_data: BulkCheckInRequest,
    usher: str = Depends(get_current_usher),
    checkin: CheckInService = Depends(get_checkin_service)
):
    """Check in several guests at once; all or nothing"""
    guests = checkin.bulk_check_in(bulk_data.guests, performed_by=usher, notes=bulk_data.notes)

    return success_response(
        message=f"Successfully checked in {len(guests)} guest(s)",
        data={"guests": [guest.model_dump(by_alias=True, mode="json") for guest in guests]}
    )

@router.get("/{guest_id}")
def get_guest(
    guest_id: str,
    usher: str = Depends(get_current_usher),
    roster: RosterService = Depends(get_roster_service)
):
    """Guest details with check-in history"""
    guest = roster.get_guest(guest_id)

    return success_response(
        message="Guest retrieved successfully",
        data=guest.model_dump(by_alias=True, mode="json")
    )

@router.get("/{guest_id}/qr.png")
def get_guest_qr(
    guest_id: str,
    usher: str = Depends(get_current_usher),
    roster: RosterService = Depends(get_roster_service)
):
    """Badge QR code for a guest"""
    guest = roster.get_guest(guest_id)
    qr_bytes = QRService.generate_guest_qr(guest.id)

    return Response(
        content=qr_bytes,
        media_type="image/png",
        headers={"Content-Disposition": f"inline; filename=qr_{guest.id}.png"}
    )

@router.post("/{guest_id}/check-in", dependencies=[Depends(enforce_rate_limit)])
def check_in_guest(
    guest_id: str,
    checkin_data: Optional[CheckInRequest] = None,
    usher: str = Depends(get_current_usher),
    checkin: CheckInService = Depends(get_checkin_service)
):
    """Check in a guest and optionally some of their plus-ones"""
    checkin_data = checkin_data or CheckInRequest()
    guest = checkin.check_in(
        guest_id,
        performed_by=usher,
        plus_ones=checkin_data.plus_ones,
        notes=checkin_data.notes
    )

    return success_response(
        message=f"{guest.full_name} is checked in",
        data={"guest": guest.model_dump(by_alias=True, mode="json")}
    )

@router.post("/{guest_id}/undo-check-in", dependencies=[Depends(enforce_rate_limit)])
def undo_check_in(
    guest_id: str,
    usher: str = Depends(get_current_usher),
    checkin: CheckInService = Depends(get_checkin_service)
):
    """Undo a check-in made moments ago"""
    guest = checkin.undo_check_in(guest_id, performed_by=usher)

    return success_response(
        message=f"Check-in undone for {guest.full_name}",
        data={"guest": guest.model_dump(by_alias=True, mode="json")}
    )
