"""
PDF processing service for certificate templates.
Overlays the verification link and QR code on page 1 and checks that a
template has the expected page count and physical size.
"""

import io
from dataclasses import dataclass
from typing import Tuple

from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PdfReadError
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from ..core import messages
from ..core.errors import ArtifactError
from ..utils.logger import get_logger

logger = get_logger("pdf_service")

POINTS_PER_MM = 72 / 25.4

# Landscape certificate envelope, in millimetres
TEMPLATE_WIDTH_MM = (340, 360)
TEMPLATE_HEIGHT_MM = (240, 260)

# Overlay anchors, in points from the bottom-left corner
LINK_POSITION = (62, 30)
LINK_FONT = ("Helvetica", 8)
QR_SCALE = 0.36
QR_RIGHT_MARGIN = 108
QR_BOTTOM = 135


@dataclass
class PageInfo:
    """Page count and first-page size of a PDF."""
    page_count: int
    width_mm: float
    height_mm: float


def _open_pdf(pdf_bytes: bytes) -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        if not reader.pages:
            raise ArtifactError(messages.INVALID_PDF)
        return reader
    except (PdfReadError, ValueError, KeyError) as e:
        logger.error(f"Unable to read PDF: {e}")
        raise ArtifactError(messages.INVALID_PDF, details=str(e))


class PDFService:
    """Service for certificate PDF operations."""

    def __init__(self, qr_scale: float = QR_SCALE):
        self.qr_scale = qr_scale

    @staticmethod
    def page_info(pdf_bytes: bytes) -> PageInfo:
        """
        Read page count and the first page's physical size.

        Raises:
            ArtifactError: If the bytes are not a readable PDF
        """
        reader = _open_pdf(pdf_bytes)
        first_page = reader.pages[0]
        return PageInfo(
            page_count=len(reader.pages),
            width_mm=float(first_page.mediabox.width) / POINTS_PER_MM,
            height_mm=float(first_page.mediabox.height) / POINTS_PER_MM,
        )

    @staticmethod
    def is_valid_template(info: PageInfo) -> bool:
        """Single page within the landscape certificate envelope."""
        return (
            info.page_count == 1
            and TEMPLATE_WIDTH_MM[0] <= info.width_mm <= TEMPLATE_WIDTH_MM[1]
            and TEMPLATE_HEIGHT_MM[0] <= info.height_mm <= TEMPLATE_HEIGHT_MM[1]
        )

    def validate_template(self, pdf_bytes: bytes) -> PageInfo:
        """
        Reject templates with the wrong page count or size.

        Raises:
            ArtifactError: If the template is unreadable or out of envelope
        """
        info = self.page_info(pdf_bytes)
        if not self.is_valid_template(info):
            logger.warning(
                f"Template rejected: {info.page_count} page(s), "
                f"{info.width_mm:.1f}x{info.height_mm:.1f}mm"
            )
            raise ArtifactError(
                messages.INVALID_PDF_TEMPLATE,
                details={
                    "pages": info.page_count,
                    "width_mm": round(info.width_mm, 1),
                    "height_mm": round(info.height_mm, 1),
                }
            )
        return info

    def _qr_placement(self, page_width: float, qr_size: Tuple[int, int]) -> Tuple[float, float, float, float]:
        width = qr_size[0] * self.qr_scale
        height = qr_size[1] * self.qr_scale
        return page_width - width - QR_RIGHT_MARGIN, QR_BOTTOM, width, height

    def _create_overlay(
        self,
        page_width: float,
        page_height: float,
        link_url: str,
        qr_png: bytes
    ):
        buffer = io.BytesIO()
        c = canvas.Canvas(buffer, pagesize=(page_width, page_height))

        c.setFont(*LINK_FONT)
        c.drawString(LINK_POSITION[0], LINK_POSITION[1], link_url)

        qr_image = ImageReader(io.BytesIO(qr_png))
        x, y, width, height = self._qr_placement(page_width, qr_image.getSize())
        c.drawImage(qr_image, x, y, width=width, height=height)

        c.save()
        buffer.seek(0)
        return PdfReader(buffer).pages[0]

    def render(self, template_bytes: bytes, link_url: str, qr_png: bytes, certificate_hash: str) -> bytes:
        """
        Draw the verification link and QR code onto a single-page template.

        Args:
            template_bytes: Template PDF; page count and size are checked by the caller
            link_url: Transaction link printed near the bottom edge
            qr_png: QR code image
            certificate_hash: Combined hash, stored in the document metadata

        Returns:
            Rendered PDF bytes
        """
        reader = _open_pdf(template_bytes)
        page = reader.pages[0]
        page_width = float(page.mediabox.width)
        page_height = float(page.mediabox.height)

        page.merge_page(self._create_overlay(page_width, page_height, link_url, qr_png))

        writer = PdfWriter()
        writer.add_page(page)
        writer.add_metadata({"/CertificateHash": certificate_hash})

        output_buffer = io.BytesIO()
        writer.write(output_buffer)
        rendered = output_buffer.getvalue()

        logger.info(f"Rendered certificate PDF ({len(template_bytes)} -> {len(rendered)} bytes)")
        return rendered
