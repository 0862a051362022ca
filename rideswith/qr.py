"""
QR codes for ride pages.
"""

import io

import segno

from rideswith import config

QR_TARGET_WIDTH = 256
QR_BORDER = 2


def ride_url(ride_id: str) -> str:
    return f"{config.APP_URL}/rides/{ride_id}"


def ride_qr_png(ride_id: str, dark: str = "#000000", light: str = "#FFFFFF") -> bytes:
    """PNG QR code of the ride URL, roughly 256 px wide, error level M."""
    qr = segno.make(ride_url(ride_id), error="m")
    # segno sizes by module scale; pick the largest scale that fits the width.
    modules = qr.symbol_size(scale=1, border=QR_BORDER)[0]
    scale = max(1, QR_TARGET_WIDTH // modules)
    buf = io.BytesIO()
    qr.save(buf, kind="png", scale=scale, dark=dark, light=light, border=QR_BORDER)
    return buf.getvalue()
