"""
QR extraction from certificate PDFs.
Page 1 is rasterized at increasing resolutions until a QR code decodes.
"""

import asyncio
import io
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from PIL import Image

from .qr_service import QRCodeService
from ..utils.logger import get_logger

logger = get_logger("qr_extraction_service")

# (max edge in pixels, dpi); higher tiers only run when lower ones fail
QR_RESOLUTION_TIERS: Tuple[Tuple[int, int], ...] = (
    (2000, 300),
    (3000, 350),
    (4000, 350),
)


def render_first_page(pdf_path: str, dpi: int, max_size: int) -> Image.Image:
    """Rasterize page 1 at the given dpi, scaled down to fit max_size."""
    import fitz  # PyMuPDF

    document = fitz.open(pdf_path)
    try:
        zoom = dpi / 72
        pix = document[0].get_pixmap(matrix=fitz.Matrix(zoom, zoom))
        image = Image.open(io.BytesIO(pix.tobytes("png")))
        image.load()
    finally:
        document.close()

    image.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
    return image


def decode_qr(image: Image.Image) -> Optional[str]:
    """Return the text of the first QR code in the image, if any."""
    from pyzbar.pyzbar import ZBarSymbol, decode

    for symbol in decode(image, symbols=[ZBarSymbol.QRCODE]):
        try:
            return symbol.data.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Skipping QR code with non UTF-8 content")
    return None


def extract_qr_text(
    pdf_path: str,
    tiers: Sequence[Tuple[int, int]] = QR_RESOLUTION_TIERS
) -> Optional[str]:
    """
    Try each resolution tier in order and stop at the first decoded QR.

    Returns:
        Decoded QR text, or None if no tier produced one
    """
    for max_size, dpi in tiers:
        image = render_first_page(pdf_path, dpi, max_size)
        text = decode_qr(image)
        if text:
            logger.info(f"QR code decoded at {max_size}px/{dpi}dpi")
            return text
        logger.debug(f"No QR code at {max_size}px/{dpi}dpi")
    return None


class QRExtractionService:
    """Reads certificate data back from an issued PDF."""

    def __init__(self, qr_service: QRCodeService, tiers: Sequence[Tuple[int, int]] = QR_RESOLUTION_TIERS):
        self.qr_service = qr_service
        self.tiers = tiers

    async def extract_text(self, pdf_path: str) -> Optional[str]:
        return await asyncio.to_thread(extract_qr_text, pdf_path, self.tiers)

    async def has_qr_code(self, pdf_path: str) -> bool:
        return await self.extract_text(pdf_path) is not None

    async def extract(self, pdf_path: str) -> Union[Dict[str, Any], bool]:
        """
        Extract and interpret the certificate QR code.

        Returns:
            Certificate info map, or False when no readable QR data was found
        """
        text = await self.extract_text(pdf_path)
        if text is None:
            logger.info(f"No QR code found in {pdf_path}")
            return False

        info = self.qr_service.parse_payload(text)
        if info is None:
            return False
        return info
