"""
Certificate verification service.
Verifies a certificate from its PDF's QR code, from its ID against the
database and the chain, or from an encrypted QR payload.
"""

import os
from typing import Any, Dict

from .blockchain_service import BlockchainGateway
from .pdf_service import PDFService
from .qr_extraction_service import QRExtractionService
from .qr_service import PAYLOAD_FIELD_LABELS
from .record_service import CertificateStore
from ..core import messages
from ..core.config import Settings
from ..core.errors import ArtifactError, ValidationError
from ..models.certificate import ServiceResponse
from ..utils.crypto import decrypt_json
from ..utils.dates import normalize_date
from ..utils.logger import get_logger
from ..utils.workspace import request_workspace, write_bytes

logger = get_logger("verification_service")


class VerificationService:
    """Service for certificate verification operations."""

    def __init__(
        self,
        store: CertificateStore,
        gateway: BlockchainGateway,
        settings: Settings,
        pdf_service: PDFService,
        qr_extraction: QRExtractionService
    ):
        self.store = store
        self.gateway = gateway
        self.settings = settings
        self.pdf_service = pdf_service
        self.qr_extraction = qr_extraction

    async def verify_pdf(self, content: bytes, filename: str) -> ServiceResponse:
        """
        Verify a certificate PDF by its embedded QR code.

        The chain is not queried; a decoded payload with a transaction link is
        accepted as valid.

        Raises:
            ArtifactError: If the upload is not a PDF or has more than one page
            ValidationError: If no readable certificate data is found
        """
        if not filename.lower().endswith(".pdf"):
            raise ArtifactError(messages.MUST_PDF, details=filename)

        info = self.pdf_service.page_info(content)
        if info.page_count > 1:
            raise ArtifactError(messages.MULTI_PAGE_PDF, details=info.page_count)

        async with request_workspace(self.settings.uploads_dir) as workspace:
            path = os.path.join(workspace, "certificate.pdf")
            await write_bytes(path, content)
            certificate = await self.qr_extraction.extract(path)

        if certificate is False or not certificate.get("Polygon URL"):
            logger.info(f"No valid certificate data in {filename}")
            raise ValidationError(messages.CERT_NOT_VALID)

        return ServiceResponse(message=messages.CERT_VALID, details=certificate)

    def _certificate_details(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "Certificate Number": record.get("certificateNumber"),
            "Name": record.get("name"),
            "Course Name": record.get("course"),
            "Grant Date": normalize_date(record.get("grantDate")) or record.get("grantDate"),
            "Expiration Date": normalize_date(record.get("expirationDate")) or record.get("expirationDate"),
            "Polygon URL": self.gateway.transaction_link(record.get("transactionHash")),
        }

    async def verify_certificate_id(self, certificate_number: str) -> ServiceResponse:
        """
        Verify a certificate ID against stored records and the chain.

        Single records must be verifiable by ID on-chain; batch records are
        checked by Merkle proof against their batch root.

        Raises:
            ValidationError: If the ID is unknown or the chain does not confirm it
        """
        single = await self.store.find_single(certificate_number)
        if single is not None:
            if await self.gateway.verify_by_id(certificate_number):
                return ServiceResponse(message=messages.CERT_VALID, details=self._certificate_details(single))
            logger.warning(f"Certificate {certificate_number} is stored but not verifiable on-chain")
            raise ValidationError(messages.CERT_NOT_VALID, details=certificate_number)

        batch = await self.store.find_batch(certificate_number)
        if batch is not None:
            proof = batch.get("proofHash") or []
            is_valid = await self.gateway.verify_in_batch(
                int(batch["batchId"]) - 1, batch["certificateHash"], proof
            )
            if is_valid:
                return ServiceResponse(message=messages.CERT_VALID, details=self._certificate_details(batch))
            raise ValidationError(messages.CERT_NOT_EXIST, details=certificate_number)

        raise ValidationError(messages.CERT_NOT_VALID, details=certificate_number)

    def decode_certificate(self, encrypted_data: str, iv: str) -> ServiceResponse:
        """
        Decrypt a QR payload submitted directly by a client.

        Raises:
            ValidationError: If the payload does not decrypt to a JSON object
        """
        try:
            data = decrypt_json(encrypted_data, iv, self.settings.encryption_key)
        except ValueError as e:
            logger.info(f"Encrypted payload rejected: {e}")
            raise ValidationError(messages.NOT_VERIFIED)

        details = {label: data.get(key, "") for key, label in PAYLOAD_FIELD_LABELS.items()}
        return ServiceResponse(message=messages.VERIFIED, details=details)
