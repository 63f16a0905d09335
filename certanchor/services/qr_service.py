"""
QR code generation and payload interpretation for certificate verification.
The QR carries the encrypted verification URL; older certificates carry a
plain key: value text block instead.
"""

import base64
from io import BytesIO
from typing import Any, Dict, Optional

import qrcode
from PIL import Image

from ..utils.crypto import decrypt_json, generate_encrypted_url, parse_encrypted_url
from ..utils.logger import get_logger

logger = get_logger("qr_service")

QR_IMAGE_SIZE = 450

# Field map keys inside the encrypted payload -> verification output keys
PAYLOAD_FIELD_LABELS = {
    "Certificate_Number": "Certificate Number",
    "name": "Name",
    "courseName": "Course Name",
    "Grant_Date": "Grant Date",
    "Expiration_Date": "Expiration Date",
    "polygonLink": "Polygon URL",
}

# Plain-text QR labels used by legacy certificates
LEGACY_FIELD_LABELS = {
    "Verify On Blockchain": "Polygon URL",
    "Certification Number": "Certificate Number",
    "Name": "Name",
    "Certification Name": "Course Name",
    "Grant Date": "Grant Date",
    "Expiration Date": "Expiration Date",
}

CERTIFICATE_INFO_KEYS = tuple(PAYLOAD_FIELD_LABELS.values())


class QRCodeService:
    """Builds QR images for issued certificates and reads their payloads back."""

    def __init__(self, encryption_key: str, verification_base_url: str):
        self.encryption_key = encryption_key
        self.verification_base_url = verification_base_url

    def build_verification_url(self, fields: Dict[str, str], polygon_link: str) -> str:
        """Encrypt the certificate fields plus the transaction link into a URL."""
        data_with_link = {**fields, "polygonLink": polygon_link}
        return generate_encrypted_url(data_with_link, self.verification_base_url, self.encryption_key)

    @staticmethod
    def generate_qr_png(data: str, size: int = QR_IMAGE_SIZE) -> bytes:
        """
        Render data as a high error-correction QR code PNG.

        Args:
            data: Text to encode
            size: Output width and height in pixels

        Returns:
            PNG bytes
        """
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_H,
            box_size=10,
            border=4,
        )
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white").get_image()
        img = img.convert("RGB").resize((size, size), Image.Resampling.NEAREST)

        buffer = BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    @staticmethod
    def to_data_url(png_bytes: bytes) -> str:
        return "data:image/png;base64," + base64.b64encode(png_bytes).decode()

    def parse_payload(self, text: str) -> Optional[Dict[str, Any]]:
        """
        Turn decoded QR text into the certificate info map.

        URLs are decrypted; anything else is read as legacy key: value lines.

        Returns:
            Dict keyed by CERTIFICATE_INFO_KEYS, or None if the payload is unreadable
        """
        if not text:
            return None
        text = text.strip()

        if text.startswith("http://") or text.startswith("https://"):
            try:
                ciphertext, iv = parse_encrypted_url(text)
                data = decrypt_json(ciphertext, iv, self.encryption_key)
            except ValueError as e:
                logger.warning(f"Unable to decrypt QR payload: {e}")
                return None
            info = {label: data.get(key, "") for key, label in PAYLOAD_FIELD_LABELS.items()}
            return info

        return self.parse_legacy_text(text)

    @staticmethod
    def parse_legacy_text(text: str) -> Optional[Dict[str, Any]]:
        info = {label: "" for label in CERTIFICATE_INFO_KEYS}
        found = False
        for line in text.splitlines():
            if ":" not in line:
                continue
            key, value = line.split(":", 1)
            label = LEGACY_FIELD_LABELS.get(key.strip())
            if label:
                info[label] = value.replace(",", "").strip()
                found = True
        return info if found else None
