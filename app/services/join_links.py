"""
Service: join_links.py
- Lien d'invitation d'une partie (`<PUBLIC_BASE_URL>/join/<code>`) et son QR code
  en data URL PNG, affiché sur l'écran de l'hôte.
"""
from __future__ import annotations

import base64
import io
import logging
from typing import Optional
from urllib.parse import quote

import qrcode

from app.config.settings import settings

logger = logging.getLogger(__name__)


def build_join_url(code: str, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")
    return f"{base}/join/{quote(str(code).strip())}"


def join_qr_data_url(code: str, base_url: Optional[str] = None) -> Optional[str]:
    """QR code PNG encodé en base64 (None si l'image ne peut pas être produite)."""
    data = build_join_url(code, base_url)
    try:
        qr = qrcode.QRCode(border=1, box_size=4)
        qr.add_data(data)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
    except Exception:
        logger.warning("QR code generation failed", exc_info=True, extra={"join_url": data})
        return None
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
