"""Render pairing codes as scannable QR images."""

from __future__ import annotations

import io

import segno

QR_SCALE = 8
QR_BORDER = 2


def _make(artifact: str) -> segno.QRCode:
    # Linked-device codes must be a regular QR code, never a Micro QR.
    return segno.make_qr(artifact, error="m")


def qr_png(artifact: str) -> bytes:
    """PNG bytes of the QR code for ``artifact``."""
    buf = io.BytesIO()
    _make(artifact).save(buf, kind="png", scale=QR_SCALE, border=QR_BORDER)
    return buf.getvalue()


def qr_data_url(artifact: str) -> str:
    """``data:image/png;base64,...`` URL for embedding in the dashboard."""
    return _make(artifact).png_data_uri(scale=QR_SCALE, border=QR_BORDER)
