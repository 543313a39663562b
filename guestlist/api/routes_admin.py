"""
Admin API routes - requires authentication
"""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from guestlist.api.dependencies import get_roster_service
from guestlist.services.excel_service import ExcelService
from guestlist.services.roster_service import RosterService
from guestlist.utils.responses import success_response
from guestlist.utils.security import verify_admin_token

router = APIRouter()

@router.get("/stats")
def get_stats(
    roster: RosterService = Depends(get_roster_service),
    token: str = Depends(verify_admin_token)
):
    """Check-in statistics"""
    return success_response(
        message="Statistics generated",
        data=roster.get_stats()
    )

@router.get("/audit-log")
def get_audit_log(
    guest_id: Optional[str] = Query(None, alias="guestId"),
    action: Optional[str] = Query(None),
    performed_by: Optional[str] = Query(None, alias="performedBy"),
    page: int = Query(1),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    roster: RosterService = Depends(get_roster_service),
    token: str = Depends(verify_admin_token)
):
    """Paginated check-in ledger, newest first"""
    result = roster.list_ledger(
        guest_id=guest_id,
        action=action,
        performed_by=performed_by,
        page=page,
        page_size=page_size
    )

    return success_response(
        message="Audit log retrieved",
        data=result.model_dump(by_alias=True, mode="json")
    )

@router.get("/export.xlsx")
def export_roster(
    status: Optional[str] = Query(None),
    ticket_type: Optional[str] = Query(None, alias="ticketType"),
    roster: RosterService = Depends(get_roster_service),
    token: str = Depends(verify_admin_token)
):
    """Export the filtered roster to Excel"""
    filters = roster.build_filters(status=status, ticket_type=ticket_type)
    excel_content = ExcelService.export_roster(roster, filters)
    stamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")

    return Response(
        content=excel_content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename=guests_{stamp}.xlsx"}
    )
