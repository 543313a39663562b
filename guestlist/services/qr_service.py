"""
Badge QR codes
"""

import io
import qrcode

class QRService:
    """Scanning a badge yields the guest id, which the usher app looks up"""

    @staticmethod
    def generate_guest_qr(guest_id: str, format: str = 'PNG', box_size: int = 8) -> bytes:
        qr = qrcode.QRCode(
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=box_size,
            border=2,
        )
        qr.add_data(guest_id)
        qr.make(fit=True)

        buffer = io.BytesIO()
        qr.make_image(fill_color="black", back_color="white").save(buffer, format=format)
        return buffer.getvalue()
