# attendance_backend/tools/qr_encoder.py

import io

import qrcode
from qrcode.constants import ERROR_CORRECT_M

DEFAULT_QR_SIZE = 300


def encode_qr_png(data: str, size: int = DEFAULT_QR_SIZE) -> bytes:
    """
    Verilen metni QR koda çevirir ve `size` x `size` piksellik PNG baytları döndürür.
    """
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)

    image = qr.make_image(fill_color="black", back_color="white").get_image()
    image = image.resize((size, size))

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
