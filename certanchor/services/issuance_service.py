"""
Certificate issuance orchestration.

Every flow runs all validation before the first state-changing chain call:
issuer -> duplicate -> required fields -> date validity -> date ordering ->
certificate number length -> certificate number characters -> name and
course length -> (PDF flows) template checks -> chain guards.
Only then is the hash anchored, records persisted and artifacts rendered.
"""

import asyncio
import io
import os
import re
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Dict, List, Optional
from zoneinfo import ZoneInfo

from .blockchain_service import BlockchainGateway, ChainReceipt
from .merkle_service import MerkleBatch, MerkleTreeBuilder
from .pdf_service import PDFService
from .qr_extraction_service import QRExtractionService
from .qr_service import QRCodeService
from .record_service import CertificateStore
from .spreadsheet_service import CertificateRow, read_certificate_rows
from .storage_service import IssuanceType, StorageService
from ..core import messages
from ..core.config import Settings
from ..core.errors import (
    ArtifactError,
    AuthorizationError,
    ChainUnavailableError,
    PersistenceError,
    ValidationError,
)
from ..models.certificate import (
    CERTIFICATE_NUMBER_PATTERN,
    COURSE_MAX_LENGTH,
    NAME_MAX_LENGTH,
    BatchCertificateRecord,
    BatchIssueResponse,
    CertificateInput,
    CertificateRecord,
    IssueCertificateResponse,
    IssuerAccount,
)
from ..utils.dates import DateComparison, compare_dates, normalize_date
from ..utils.hashing import build_certificate_fields, hash_certificate_fields
from ..utils.logger import get_logger
from ..utils.serialization import serialize_document
from ..utils.workspace import read_bytes, request_workspace, write_bytes

logger = get_logger("issuance_service")

MIN_ARCHIVE_SIZE = 100
ARCHIVE_NAME_FORMAT = "%m-%d-%Y_%H-%M-%S"


@dataclass
class PreparedCertificate:
    """A validated certificate ready to be anchored."""
    fields: Dict[str, str]
    certificate_hash: str
    template_path: Optional[str] = None
    file_stem: Optional[str] = None

    @property
    def certificate_number(self) -> str:
        return self.fields["Certificate_Number"]


@dataclass
class IssuanceArtifact:
    """Downloadable result of a PDF or bulk issuance."""
    content: bytes
    media_type: str
    filename: str
    records: List[dict] = field(default_factory=list)


def _row_input(row: CertificateRow) -> CertificateInput:
    return CertificateInput(
        certificate_number=row.certificate_number,
        name=row.name,
        course=row.course,
        grant_date=row.grant_date,
        expiration_date=row.expiration_date,
    )


def extract_archive(content: bytes, directory: str) -> List[str]:
    """
    Unpack a zip into a flat directory.

    Directories, macOS resource forks and hidden files are skipped.

    Raises:
        ArtifactError: If the bytes are not a zip archive
    """
    paths = []
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            for member in archive.infolist():
                name = os.path.basename(member.filename)
                if member.is_dir() or not name or name.startswith("."):
                    continue
                if member.filename.startswith("__MACOSX"):
                    continue
                path = os.path.join(directory, name)
                with archive.open(member) as source, open(path, "wb") as target:
                    target.write(source.read())
                paths.append(path)
    except zipfile.BadZipFile as e:
        raise ArtifactError(messages.MUST_ZIP, details=str(e))
    return paths


def build_zip(files: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


class IssuanceService:
    """Runs the single, PDF, batch and bulk issuance flows."""

    def __init__(
        self,
        store: CertificateStore,
        gateway: BlockchainGateway,
        settings: Settings,
        qr_service: QRCodeService,
        pdf_service: PDFService,
        qr_extraction: QRExtractionService,
        storage: Optional[StorageService] = None
    ):
        self.store = store
        self.gateway = gateway
        self.settings = settings
        self.qr_service = qr_service
        self.pdf_service = pdf_service
        self.qr_extraction = qr_extraction
        self.storage = storage

    # Validation

    async def _get_approved_issuer(self, email: str) -> IssuerAccount:
        issuer = await self.store.find_issuer(email)
        if issuer is None or not issuer.is_approved or not issuer.issuer_id:
            logger.warning(f"Issuance refused for unknown or unapproved issuer {email}")
            raise AuthorizationError(messages.INVALID_ISSUER, details=email)
        return issuer

    async def _prepare(self, data: CertificateInput) -> PreparedCertificate:
        """
        Validate one certificate and compute its hashes.

        Raises:
            ValidationError: On the first failing check, in fixed order
        """
        certificate_number = (data.certificate_number or "").strip()

        if certificate_number and await self.store.certificate_exists(certificate_number):
            raise ValidationError(messages.CERT_ISSUED, details=certificate_number)

        if not all([certificate_number, data.name, data.course, data.grant_date, data.expiration_date]):
            raise ValidationError(messages.ENTER_ALL_FIELDS, details=certificate_number or None)

        grant_date = normalize_date(data.grant_date)
        expiration_date = normalize_date(data.expiration_date)
        if grant_date is None or expiration_date is None:
            raise ValidationError(
                messages.PROVIDE_VALID_DATES,
                details={"grantDate": data.grant_date, "expirationDate": data.expiration_date}
            )

        if compare_dates(grant_date, expiration_date) != DateComparison.EARLIER:
            raise ValidationError(
                messages.OLDER_DATES_ERROR,
                details={"grantDate": grant_date, "expirationDate": expiration_date}
            )

        min_length = self.settings.cert_number_min_length
        max_length = self.settings.cert_number_max_length
        if not min_length <= len(certificate_number) <= max_length:
            raise ValidationError(
                messages.CERT_LENGTH.format(min=min_length, max=max_length),
                details=certificate_number
            )

        # Spreadsheet rows bypass the request models, so their rules are repeated here
        if not re.match(CERTIFICATE_NUMBER_PATTERN, certificate_number):
            raise ValidationError(messages.CERT_SPECIAL_CHARS, details=certificate_number)
        if len(data.name) > NAME_MAX_LENGTH:
            raise ValidationError(
                messages.NAME_TOO_LONG.format(max=NAME_MAX_LENGTH), details=certificate_number
            )
        if len(data.course) > COURSE_MAX_LENGTH:
            raise ValidationError(
                messages.COURSE_TOO_LONG.format(max=COURSE_MAX_LENGTH), details=certificate_number
            )

        fields = build_certificate_fields(
            certificate_number, data.name, data.course, grant_date, expiration_date
        )
        _, certificate_hash = hash_certificate_fields(fields)
        return PreparedCertificate(fields=fields, certificate_hash=certificate_hash)

    async def _prepare_rows(self, rows: List[CertificateRow]) -> List[PreparedCertificate]:
        prepared = []
        for row in rows:
            certificate = await self._prepare(_row_input(row))
            certificate.file_stem = row.file_stem
            prepared.append(certificate)
        return prepared

    # Chain and persistence

    @staticmethod
    def _require_receipt(receipt: Optional[ChainReceipt], details=None) -> ChainReceipt:
        if receipt is None:
            raise ChainUnavailableError(messages.FAILED_TO_ISSUE_AFTER_RETRY, details=details)
        return receipt

    async def _persist(
        self,
        inserts: List[Awaitable],
        issuer: IssuerAccount,
        transaction_hashes: List[str]
    ) -> None:
        """
        Run record inserts concurrently, then bump the issuer's count.

        Raises:
            PersistenceError: If anything failed; the chain state is already final
        """
        tasks = [asyncio.ensure_future(insert) for insert in inserts]
        results = await asyncio.gather(*tasks, return_exceptions=True)
        failures = [result for result in results if isinstance(result, Exception)]

        stored = len(results) - len(failures)
        if stored:
            try:
                await self.store.increment_issued(issuer.issuer_id, stored)
            except PersistenceError as e:
                failures.append(e)

        if failures:
            logger.critical(
                f"Reconciliation required: transaction(s) {', '.join(transaction_hashes)} "
                f"are on-chain but {len(failures)} database write(s) failed: {failures[0]}"
            )
            raise PersistenceError(
                messages.RECONCILIATION_REQUIRED,
                details={
                    "transactionHashes": transaction_hashes,
                    "issuedOnChain": True,
                    "recordsStored": stored,
                    "error": str(failures[0]),
                }
            )

    def _qr_for(self, certificate: PreparedCertificate, link: str) -> bytes:
        url = self.qr_service.build_verification_url(certificate.fields, link)
        return self.qr_service.generate_qr_png(url)

    def _single_record(
        self,
        issuer: IssuerAccount,
        certificate: PreparedCertificate,
        receipt: ChainReceipt
    ) -> CertificateRecord:
        fields = certificate.fields
        return CertificateRecord(
            issuer_id=issuer.issuer_id,
            transaction_hash=receipt.transaction_hash,
            certificate_hash=certificate.certificate_hash,
            certificate_number=fields["Certificate_Number"],
            name=fields["name"],
            course=fields["courseName"],
            grant_date=fields["Grant_Date"],
            expiration_date=fields["Expiration_Date"],
        )

    def _batch_records(
        self,
        issuer: IssuerAccount,
        certificates: List[PreparedCertificate],
        batch: MerkleBatch,
        batch_id: int,
        receipt: ChainReceipt
    ) -> List[BatchCertificateRecord]:
        records = []
        for index, certificate in enumerate(certificates):
            proof = batch.proof_of(index)
            fields = certificate.fields
            records.append(BatchCertificateRecord(
                issuer_id=issuer.issuer_id,
                batch_id=batch_id,
                proof_hash=proof,
                encoded_proof=MerkleTreeBuilder.encode_proof(proof),
                transaction_hash=receipt.transaction_hash,
                certificate_hash=certificate.certificate_hash,
                certificate_number=fields["Certificate_Number"],
                name=fields["name"],
                course=fields["courseName"],
                grant_date=fields["Grant_Date"],
                expiration_date=fields["Expiration_Date"],
            ))
        return records

    async def _anchor_batch(
        self,
        issuer: IssuerAccount,
        certificates: List[PreparedCertificate]
    ):
        batch = MerkleTreeBuilder.build_batch([c.certificate_hash for c in certificates])
        batch_id, receipt = await self.gateway.issue_batch_sequenced(batch.root)
        receipt = self._require_receipt(receipt, details=batch.root)
        logger.info(f"Batch {batch_id} anchored with root {batch.root} in {receipt.transaction_hash}")

        records = self._batch_records(issuer, certificates, batch, batch_id, receipt)
        await self._persist(
            [self.store.insert_batch(record) for record in records],
            issuer,
            [receipt.transaction_hash]
        )
        return batch_id, receipt, records

    # Flows

    async def issue_certificate(self, email: str, data: CertificateInput) -> IssueCertificateResponse:
        """
        Issue one certificate and return its QR code inline.

        Args:
            email: Issuer email
            data: Certificate fields

        Returns:
            Response with the QR image as a data URL and the transaction link
        """
        issuer = await self._get_approved_issuer(email)
        certificate = await self._prepare(data)
        await self.gateway.ensure_can_issue(issuer.issuer_id, [certificate.certificate_number])

        receipt = self._require_receipt(
            await self.gateway.issue_single(certificate.certificate_number, certificate.certificate_hash),
            details=certificate.certificate_number
        )
        record = self._single_record(issuer, certificate, receipt)
        await self._persist([self.store.insert_single(record)], issuer, [receipt.transaction_hash])

        qr_png = self._qr_for(certificate, receipt.link)
        logger.info(f"Issued certificate {certificate.certificate_number} by {issuer.issuer_id}")
        return IssueCertificateResponse(
            message=messages.CERT_ISSUED_SUCCESS,
            qr_code_image=self.qr_service.to_data_url(qr_png),
            polygon_link=receipt.link,
            details=serialize_document(record.to_document()),
        )

    async def issue_pdf_certificate(
        self,
        email: str,
        data: CertificateInput,
        template: bytes,
        filename: str
    ) -> IssuanceArtifact:
        """
        Issue one certificate onto an uploaded PDF template.

        Returns:
            The rendered PDF

        Raises:
            ArtifactError: If the template is not a single page of the
                certificate size, or already carries a QR code
        """
        if not filename.lower().endswith(".pdf"):
            raise ArtifactError(messages.MUST_PDF, details=filename)

        issuer = await self._get_approved_issuer(email)
        certificate = await self._prepare(data)

        async with request_workspace(self.settings.uploads_dir) as workspace:
            self.pdf_service.validate_template(template)
            template_path = os.path.join(workspace, "template.pdf")
            await write_bytes(template_path, template)
            if await self.qr_extraction.has_qr_code(template_path):
                raise ArtifactError(messages.PDF_HAS_QR, details=filename)

            await self.gateway.ensure_can_issue(issuer.issuer_id, [certificate.certificate_number])
            receipt = self._require_receipt(
                await self.gateway.issue_single(certificate.certificate_number, certificate.certificate_hash),
                details=certificate.certificate_number
            )
            record = self._single_record(issuer, certificate, receipt)
            await self._persist([self.store.insert_single(record)], issuer, [receipt.transaction_hash])

            qr_png = self._qr_for(certificate, receipt.link)
            rendered = await asyncio.to_thread(
                self.pdf_service.render, template, receipt.link, qr_png, certificate.certificate_hash
            )

        logger.info(f"Issued PDF certificate {certificate.certificate_number} by {issuer.issuer_id}")
        return IssuanceArtifact(
            content=rendered,
            media_type="application/pdf",
            filename=f"{certificate.certificate_number}.pdf",
            records=[serialize_document(record.to_document())],
        )

    async def issue_batch(self, email: str, spreadsheet: bytes, filename: str) -> BatchIssueResponse:
        """
        Issue every spreadsheet row under one Merkle root transaction.

        Returns:
            Response with the shared transaction link and per-row records and QR codes
        """
        if not filename.lower().endswith(".xlsx"):
            raise ArtifactError(messages.MUST_EXCEL, details=filename)

        issuer = await self._get_approved_issuer(email)
        rows = await asyncio.to_thread(read_certificate_rows, spreadsheet)
        certificates = await self._prepare_rows(rows)
        await self.gateway.ensure_can_issue(
            issuer.issuer_id, [c.certificate_number for c in certificates]
        )

        batch_id, receipt, records = await self._anchor_batch(issuer, certificates)

        details = []
        for certificate, record in zip(certificates, records):
            document = serialize_document(record.to_document())
            document["qrCodeImage"] = self.qr_service.to_data_url(self._qr_for(certificate, receipt.link))
            details.append(document)

        logger.info(f"Issued batch {batch_id} of {len(records)} certificates by {issuer.issuer_id}")
        return BatchIssueResponse(
            message=messages.BATCH_ISSUED_SUCCESS,
            polygon_link=receipt.link,
            batch_id=batch_id,
            details=details,
        )

    async def bulk_issue(
        self,
        email: str,
        archive: bytes,
        filename: str,
        issuance_type: IssuanceType
    ) -> IssuanceArtifact:
        """
        Issue certificates from a zip of one spreadsheet and matching PDFs.

        Single bulk issuance sends one transaction per row; batch bulk
        issuance anchors one Merkle root for the whole archive. Every
        rendered PDF plus the spreadsheet is returned as a zip, which is
        also backed up to object storage.

        Raises:
            ArtifactError: On a malformed archive or template
            ValidationError: On row problems or spreadsheet/PDF mismatch
        """
        if not filename.lower().endswith(".zip"):
            raise ArtifactError(messages.MUST_ZIP, details=filename)
        if len(archive) <= MIN_ARCHIVE_SIZE:
            raise ArtifactError(messages.UNABLE_TO_FIND_FILES, details=filename)

        issuer = await self._get_approved_issuer(email)

        async with request_workspace(self.settings.uploads_dir) as workspace:
            paths = await asyncio.to_thread(extract_archive, archive, workspace)
            if len(paths) <= 1:
                raise ArtifactError(messages.UNABLE_TO_FIND_FILES, details=filename)

            excel_paths = sorted(p for p in paths if p.lower().endswith(".xlsx"))
            pdf_paths = sorted(p for p in paths if p.lower().endswith(".pdf"))
            if not excel_paths:
                raise ArtifactError(messages.UNABLE_TO_FIND_EXCEL_FILES, details=filename)
            if not pdf_paths:
                raise ArtifactError(messages.UNABLE_TO_FIND_PDF_FILES, details=filename)

            excel_path = excel_paths[0]
            excel_bytes = await read_bytes(excel_path)
            rows = await asyncio.to_thread(read_certificate_rows, excel_bytes)
            certificates = await self._match_templates(rows, pdf_paths)

            templates = {}
            for certificate in certificates:
                templates[certificate.file_stem] = await read_bytes(certificate.template_path)
                self.pdf_service.validate_template(templates[certificate.file_stem])

            await self.gateway.ensure_can_issue(
                issuer.issuer_id, [c.certificate_number for c in certificates]
            )

            if issuance_type == IssuanceType.BATCH:
                _, receipt, records = await self._anchor_batch(issuer, certificates)
                links = [receipt.link] * len(certificates)
            else:
                links, records = await self._issue_each(issuer, certificates)

            outputs = {}
            for certificate, link in zip(certificates, links):
                qr_png = self._qr_for(certificate, link)
                outputs[f"{certificate.file_stem}.pdf"] = await asyncio.to_thread(
                    self.pdf_service.render,
                    templates[certificate.file_stem],
                    link,
                    qr_png,
                    certificate.certificate_hash
                )
            outputs[os.path.basename(excel_path)] = excel_bytes

        content = await asyncio.to_thread(build_zip, outputs)
        archive_name = datetime.now(ZoneInfo(self.settings.backup_timezone)).strftime(ARCHIVE_NAME_FORMAT) + ".zip"
        if self.storage is not None:
            self.storage.backup_in_background(archive_name, content, issuance_type)

        logger.info(
            f"Bulk {issuance_type.name.lower()} issuance of {len(certificates)} certificates "
            f"by {issuer.issuer_id} packaged as {archive_name}"
        )
        return IssuanceArtifact(
            content=content,
            media_type="application/zip",
            filename=archive_name,
            records=[serialize_document(record.to_document()) for record in records],
        )

    async def _match_templates(
        self,
        rows: List[CertificateRow],
        pdf_paths: List[str]
    ) -> List[PreparedCertificate]:
        """Pair each row with `<stem>.pdf`, then validate the rows."""
        pdf_by_stem = {os.path.splitext(os.path.basename(p))[0]: p for p in pdf_paths}

        for row in rows:
            if row.file_stem not in pdf_by_stem:
                raise ValidationError(messages.NO_ENTRY_MATCH_FOUND, details=row.file_stem)

        stems = {row.file_stem for row in rows}
        if len(pdf_by_stem) != len(rows) or set(pdf_by_stem) != stems:
            raise ValidationError(
                messages.INPUT_RECORDS_NOT_MATCHED,
                details={"pdfFiles": len(pdf_by_stem), "records": len(rows)}
            )

        certificates = await self._prepare_rows(rows)
        for certificate in certificates:
            certificate.template_path = pdf_by_stem[certificate.file_stem]
        return certificates

    async def _issue_each(
        self,
        issuer: IssuerAccount,
        certificates: List[PreparedCertificate]
    ):
        """One transaction per certificate; inserts run while later rows are sent."""
        links, records, inserts, hashes = [], [], [], []
        try:
            for certificate in certificates:
                receipt = self._require_receipt(
                    await self.gateway.issue_single(
                        certificate.certificate_number, certificate.certificate_hash
                    ),
                    details=certificate.certificate_number
                )
                record = self._single_record(issuer, certificate, receipt)
                inserts.append(asyncio.ensure_future(self.store.insert_single(record)))
                hashes.append(receipt.transaction_hash)
                links.append(receipt.link)
                records.append(record)
        except Exception:
            # Rows already anchored must still be stored before the error surfaces
            if inserts:
                await self._persist(inserts, issuer, hashes)
            raise

        await self._persist(inserts, issuer, hashes)
        return links, records
