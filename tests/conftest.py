"""
CertAnchor - Pytest Configuration
==================================
Fixtures shared by the unit, orchestrator and API tests.
"""

import hashlib
import io
import shutil
import tempfile
import zipfile
from decimal import Decimal
from pathlib import Path

import openpyxl
import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from certanchor.core.config import Settings
from certanchor.core.errors import ChainError
from certanchor.services.blockchain_service import BlockchainGateway, ChainReceipt
from certanchor.services.issuance_service import IssuanceService
from certanchor.services.merkle_service import MerkleTreeBuilder
from certanchor.services.pdf_service import PDFService
from certanchor.services.qr_extraction_service import QRExtractionService
from certanchor.services.qr_service import QRCodeService
from certanchor.services.record_service import CertificateStore
from certanchor.services.verification_service import VerificationService

ISSUER_EMAIL = "issuer@example.com"
ISSUER_ADDRESS = "0x5868c5fa4eef9db8ca998f16845ccffa3b85c472"
SPREADSHEET_HEADERS = ["Certs", "certificationID", "name", "certificationName", "grantDate", "expirationDate"]


# ============================================================================
# TEST DOUBLES
# ============================================================================

class FakeLedger(BlockchainGateway):
    """In-memory contract: keeps issued IDs and batch roots, records submissions."""

    def __init__(self):
        super().__init__(w3=None, contract=None, network="amoy.polygonscan.com", retry_delay=0)
        self.paused = False
        self.issuers = {ISSUER_ADDRESS}
        self.certificates = {}
        self.roots = []
        self.submissions = []
        self.revert_reason = None
        self.unavailable = False

    def _receipt(self, payload: str) -> ChainReceipt:
        tx_hash = "0x" + hashlib.sha256(f"{len(self.submissions)}:{payload}".encode()).hexdigest()
        return ChainReceipt(transaction_hash=tx_hash, link=self.transaction_link(tx_hash))

    def _submit(self, kind: str, payload: str):
        self.submissions.append((kind, payload))
        if self.revert_reason:
            raise ChainError(self.revert_reason)
        if self.unavailable:
            return None
        return self._receipt(payload)

    async def is_connected(self) -> bool:
        return True

    async def is_paused(self) -> bool:
        return self.paused

    async def has_role(self, role: str, address: str) -> bool:
        return address.lower() in self.issuers

    async def verify_by_id(self, certificate_number: str) -> bool:
        return certificate_number in self.certificates

    async def verify_in_batch(self, batch_index, certificate_hash, proof) -> bool:
        if not 0 <= batch_index < len(self.roots):
            return False
        return MerkleTreeBuilder.verify_proof(self.roots[batch_index], certificate_hash, proof)

    async def get_root_length(self) -> int:
        return len(self.roots)

    async def get_balance(self, address: str) -> Decimal:
        return Decimal("1.23456")

    async def issue_single(self, certificate_number, certificate_hash):
        receipt = self._submit("single", certificate_number)
        if receipt is not None:
            self.certificates[certificate_number] = certificate_hash
        return receipt

    async def issue_batch(self, root):
        receipt = self._submit("batch", root)
        if receipt is not None:
            self.roots.append(root)
        return receipt

    async def grant_role(self, role, address):
        receipt = self._submit("grant", address)
        self.issuers.add(address.lower())
        return receipt

    async def revoke_role(self, role, address):
        receipt = self._submit("revoke", address)
        self.issuers.discard(address.lower())
        return receipt


class NoQRExtraction(QRExtractionService):
    """Extraction double for templates: never finds a QR code."""

    async def extract_text(self, pdf_path):
        return None


class RecordingStorage:
    """Object storage double that remembers backups."""

    def __init__(self):
        self.backups = []

    def backup_in_background(self, filename, content, issuance_type):
        self.backups.append((filename, content, issuance_type))


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================

@pytest.fixture
def temp_uploads_dir():
    """Temporary uploads area"""
    temp_dir = Path(tempfile.mkdtemp())
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def settings(temp_uploads_dir):
    """Test settings"""
    return Settings(
        uploads_dir=str(temp_uploads_dir),
        encryption_key="test-secret",
        verification_base_url="https://verify.test/",
        chain_retry_delay=0,
    )


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest_asyncio.fixture
async def db():
    """In-memory Mongo database with one approved issuer"""
    client = AsyncMongoMockClient()
    database = client["certanchor_test"]
    await database["issuers"].insert_one({
        "email": ISSUER_EMAIL,
        "issuerId": ISSUER_ADDRESS,
        "status": 1,
        "certificatesIssued": 0,
    })
    return database


@pytest.fixture
def store(db):
    return CertificateStore(db)


# ============================================================================
# SERVICE FIXTURES
# ============================================================================

@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def storage():
    return RecordingStorage()


@pytest.fixture
def qr_service(settings):
    return QRCodeService(settings.encryption_key, settings.verification_base_url)


@pytest.fixture
def issuance_service(store, ledger, settings, qr_service, storage):
    return IssuanceService(
        store=store,
        gateway=ledger,
        settings=settings,
        qr_service=qr_service,
        pdf_service=PDFService(),
        qr_extraction=NoQRExtraction(qr_service),
        storage=storage,
    )


@pytest.fixture
def verification_service(store, ledger, settings, qr_service):
    return VerificationService(
        store=store,
        gateway=ledger,
        settings=settings,
        pdf_service=PDFService(),
        qr_extraction=QRExtractionService(qr_service),
    )


# ============================================================================
# FILE FIXTURES
# ============================================================================

def build_pdf(width_mm: float = 350, height_mm: float = 250, pages: int = 1) -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(width_mm * mm, height_mm * mm))
    for page in range(pages):
        c.setFont("Helvetica-Bold", 36)
        c.drawString(60 * mm, 150 * mm, "Certificate of Completion")
        c.showPage()
    c.save()
    return buffer.getvalue()


def build_spreadsheet(rows, headers=SPREADSHEET_HEADERS) -> bytes:
    workbook = openpyxl.Workbook()
    worksheet = workbook.active
    worksheet.append(headers)
    for row in rows:
        worksheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def build_zip(files) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def template_pdf():
    """Single-page 350x250mm certificate template"""
    return build_pdf()


@pytest.fixture
def certificate_rows():
    """Two valid spreadsheet rows"""
    return [
        ("CERT0000000001", "CERT0000000001", "Alice Doe", "Blockchain Basics", "01/15/2024", "01/15/2026"),
        ("CERT0000000002", "CERT0000000002", "Bob Roe", "Blockchain Basics", "01/15/2024", "01/15/2026"),
    ]
