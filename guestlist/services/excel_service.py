"""
Excel export of the guest roster
"""

import io
from typing import Optional
import pandas as pd

from guestlist.schemas.guest import RosterFilters
from guestlist.services.roster_service import RosterService

class ExcelService:
    """Service for handling Excel operations"""

    EXPORT_COLUMNS = [
        'ID', 'First Name', 'Last Name', 'Email', 'Phone', 'Ticket Type',
        'Plus Ones Allowed', 'Plus Ones Checked In', 'Status', 'Check-In Time',
        'Checked In By', 'Confirmation Code', 'Notes',
    ]

    @staticmethod
    def export_roster(roster: RosterService, filters: Optional[RosterFilters] = None) -> bytes:
        """Export the filtered roster, in roster order, to an Excel workbook"""
        data = []
        for guest in roster.iter_guests(filters):
            data.append({
                'ID': guest.id,
                'First Name': guest.first_name,
                'Last Name': guest.last_name,
                'Email': guest.email,
                'Phone': guest.phone,
                'Ticket Type': guest.ticket_type,
                'Plus Ones Allowed': guest.plus_ones_allowed,
                'Plus Ones Checked In': guest.plus_ones_checked_in,
                'Status': 'Checked In' if guest.status.value == 'checked_in' else 'Not Checked In',
                'Check-In Time': guest.check_in_time,
                'Checked In By': guest.checked_in_by or '',
                'Confirmation Code': guest.confirmation_code,
                'Notes': guest.notes,
            })

        df = pd.DataFrame(data, columns=ExcelService.EXPORT_COLUMNS)

        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            df.to_excel(writer, index=False, sheet_name='Guest List')

        return buffer.getvalue()
