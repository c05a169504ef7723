"""
# @file purpose: Rendering PNG del codice di pairing
"""

import io

import qrcode


def render_qr_png(code: str) -> bytes:
    """Renderizza il codice di pairing come immagine PNG scansionabile"""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(code)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF").convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
