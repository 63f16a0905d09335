"""
CertAnchor - Issuance Orchestrator Tests
=========================================
Single, PDF, batch and bulk flows against the in-memory ledger and database.
"""

import asyncio
import io
import os
import threading
import zipfile

import pytest
from pymongo.errors import PyMongoError

from certanchor.core import messages
from certanchor.core.errors import (
    ArtifactError,
    AuthorizationError,
    ChainError,
    ChainUnavailableError,
    PersistenceError,
    ValidationError,
)
from certanchor.models.certificate import CertificateInput
from certanchor.services import issuance_service as issuance_module
from certanchor.services.storage_service import IssuanceType

from conftest import ISSUER_ADDRESS, ISSUER_EMAIL, FakeLedger, build_pdf, build_spreadsheet, build_zip


def certificate_input(**overrides) -> CertificateInput:
    values = {
        "certificate_number": "CERT0000000001",
        "name": "Alice Doe",
        "course": "Blockchain Basics",
        "grant_date": "2024-01-15",
        "expiration_date": "01/15/2026",
    }
    values.update(overrides)
    return CertificateInput(**values)


class TestIssueCertificate:
    """Test single certificate issuance without a template"""

    @pytest.mark.asyncio
    async def test_issue_success(self, issuance_service, ledger, db):
        response = await issuance_service.issue_certificate(ISSUER_EMAIL, certificate_input())

        assert response.message == messages.CERT_ISSUED_SUCCESS
        assert response.qr_code_image.startswith("data:image/png;base64,")
        assert response.polygon_link.startswith("https://amoy.polygonscan.com/tx/0x")
        assert response.details["grantDate"] == "01/15/2024"
        assert ledger.submissions == [("single", "CERT0000000001")]

        record = await db["issues"].find_one({"certificateNumber": "CERT0000000001"})
        assert record["issuerId"] == ISSUER_ADDRESS
        assert record["certificateHash"] == ledger.certificates["CERT0000000001"]

        issuer = await db["issuers"].find_one({"email": ISSUER_EMAIL})
        assert issuer["certificatesIssued"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_is_rejected_before_chain(self, issuance_service, ledger):
        await issuance_service.issue_certificate(ISSUER_EMAIL, certificate_input())

        with pytest.raises(ValidationError) as exc_info:
            await issuance_service.issue_certificate(ISSUER_EMAIL, certificate_input())

        assert exc_info.value.message == messages.CERT_ISSUED
        assert len(ledger.submissions) == 1

    @pytest.mark.asyncio
    async def test_unknown_issuer(self, issuance_service, ledger):
        with pytest.raises(AuthorizationError) as exc_info:
            await issuance_service.issue_certificate("nobody@example.com", certificate_input())

        assert exc_info.value.message == messages.INVALID_ISSUER
        assert ledger.submissions == []

    @pytest.mark.asyncio
    async def test_unapproved_issuer(self, issuance_service, db):
        await db["issuers"].update_one({"email": ISSUER_EMAIL}, {"$set": {"status": 2}})

        with pytest.raises(AuthorizationError):
            await issuance_service.issue_certificate(ISSUER_EMAIL, certificate_input())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides, message", [
        ({"name": ""}, messages.ENTER_ALL_FIELDS),
        ({"grant_date": "02/30/2024"}, messages.PROVIDE_VALID_DATES),
        ({"grant_date": "01/15/2026"}, messages.OLDER_DATES_ERROR),
        ({"expiration_date": "01/14/2024"}, messages.OLDER_DATES_ERROR),
        ({"certificate_number": "SHORT123"}, messages.CERT_LENGTH.format(min=12, max=20)),
        ({"certificate_number": "CERT#000000001"}, messages.CERT_SPECIAL_CHARS),
        ({"name": "A" * 41}, messages.NAME_TOO_LONG.format(max=40)),
        ({"course": "C" * 151}, messages.COURSE_TOO_LONG.format(max=150)),
    ])
    async def test_invalid_input_never_reaches_chain(self, issuance_service, ledger, overrides, message):
        with pytest.raises(ValidationError) as exc_info:
            await issuance_service.issue_certificate(ISSUER_EMAIL, certificate_input(**overrides))

        assert exc_info.value.message == message
        assert ledger.submissions == []

    @pytest.mark.asyncio
    async def test_paused_contract(self, issuance_service, ledger):
        ledger.paused = True

        with pytest.raises(ChainError) as exc_info:
            await issuance_service.issue_certificate(ISSUER_EMAIL, certificate_input())

        assert exc_info.value.message == messages.OPS_RESTRICTED
        assert ledger.submissions == []

    @pytest.mark.asyncio
    async def test_issuer_without_role(self, issuance_service, ledger):
        ledger.issuers.clear()

        with pytest.raises(AuthorizationError) as exc_info:
            await issuance_service.issue_certificate(ISSUER_EMAIL, certificate_input())

        assert exc_info.value.message == messages.ISSUER_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_already_on_chain(self, issuance_service, ledger):
        ledger.certificates["CERT0000000001"] = "0xabc"

        with pytest.raises(ValidationError) as exc_info:
            await issuance_service.issue_certificate(ISSUER_EMAIL, certificate_input())

        assert exc_info.value.message == messages.CERT_ISSUED
        assert ledger.submissions == []

    @pytest.mark.asyncio
    async def test_revert_reason_is_surfaced(self, issuance_service, ledger, db):
        ledger.revert_reason = "Certificate already issued"

        with pytest.raises(ChainError) as exc_info:
            await issuance_service.issue_certificate(ISSUER_EMAIL, certificate_input())

        assert exc_info.value.message == "Certificate already issued"
        assert len(ledger.submissions) == 1
        assert await db["issues"].count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_chain_unavailable(self, issuance_service, ledger, db):
        ledger.unavailable = True

        with pytest.raises(ChainUnavailableError) as exc_info:
            await issuance_service.issue_certificate(ISSUER_EMAIL, certificate_input())

        assert exc_info.value.message == messages.FAILED_TO_ISSUE_AFTER_RETRY
        assert await db["issues"].count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_store_failure_after_anchor(self, issuance_service, ledger, monkeypatch):
        async def failing_insert(record):
            raise PersistenceError(messages.DB_FAILED, details="connection reset")

        monkeypatch.setattr(issuance_service.store, "insert_single", failing_insert)

        with pytest.raises(PersistenceError) as exc_info:
            await issuance_service.issue_certificate(ISSUER_EMAIL, certificate_input())

        error = exc_info.value
        assert error.status_code == 500
        assert error.message == messages.RECONCILIATION_REQUIRED
        assert error.details["issuedOnChain"] is True
        assert error.details["recordsStored"] == 0
        assert len(error.details["transactionHashes"]) == 1
        assert "CERT0000000001" in ledger.certificates


class TestIssuePdfCertificate:
    """Test issuance onto an uploaded template"""

    @pytest.mark.asyncio
    async def test_rendered_pdf(self, issuance_service, template_pdf, temp_uploads_dir):
        artifact = await issuance_service.issue_pdf_certificate(
            ISSUER_EMAIL, certificate_input(), template_pdf, "template.pdf"
        )

        assert artifact.media_type == "application/pdf"
        assert artifact.filename == "CERT0000000001.pdf"
        assert artifact.content.startswith(b"%PDF")
        assert artifact.records[0]["certificateNumber"] == "CERT0000000001"
        assert os.listdir(temp_uploads_dir) == []

    @pytest.mark.asyncio
    async def test_wrong_template_size(self, issuance_service, ledger):
        with pytest.raises(ArtifactError) as exc_info:
            await issuance_service.issue_pdf_certificate(
                ISSUER_EMAIL, certificate_input(), build_pdf(297, 210), "a4.pdf"
            )

        assert exc_info.value.message == messages.INVALID_PDF_TEMPLATE
        assert ledger.submissions == []

    @pytest.mark.asyncio
    async def test_not_a_pdf(self, issuance_service, template_pdf):
        with pytest.raises(ArtifactError):
            await issuance_service.issue_pdf_certificate(
                ISSUER_EMAIL, certificate_input(), template_pdf, "template.docx"
            )

    @pytest.mark.asyncio
    async def test_template_with_qr(self, issuance_service, ledger, template_pdf, monkeypatch):
        async def found(path):
            return "https://verify.test/?q=00&iv=00"

        monkeypatch.setattr(issuance_service.qr_extraction, "extract_text", found)

        with pytest.raises(ArtifactError) as exc_info:
            await issuance_service.issue_pdf_certificate(
                ISSUER_EMAIL, certificate_input(), template_pdf, "template.pdf"
            )

        assert exc_info.value.message == messages.PDF_HAS_QR
        assert ledger.submissions == []


class TestIssueBatch:
    """Test Merkle batch issuance from a spreadsheet"""

    @pytest.mark.asyncio
    async def test_batch_from_spreadsheet(self, issuance_service, ledger, db, certificate_rows):
        response = await issuance_service.issue_batch(
            ISSUER_EMAIL, build_spreadsheet(certificate_rows), "certificates.xlsx"
        )

        assert response.batch_id == 1
        assert len(response.details) == 2
        assert ledger.submissions[0][0] == "batch"
        assert len(ledger.submissions) == 1

        records = await db["batchissues"].find({}).to_list(length=None)
        assert len(records) == 2
        for record in records:
            assert record["batchId"] == 1
            assert await ledger.verify_in_batch(0, record["certificateHash"], record["proofHash"])

        issuer = await db["issuers"].find_one({"email": ISSUER_EMAIL})
        assert issuer["certificatesIssued"] == 2

    @pytest.mark.asyncio
    async def test_batch_ids_follow_root_count(self, issuance_service, certificate_rows):
        first = await issuance_service.issue_batch(
            ISSUER_EMAIL, build_spreadsheet(certificate_rows[:1]), "first.xlsx"
        )
        second = await issuance_service.issue_batch(
            ISSUER_EMAIL, build_spreadsheet(certificate_rows[1:]), "second.xlsx"
        )
        assert (first.batch_id, second.batch_id) == (1, 2)

    @pytest.mark.asyncio
    async def test_invalid_row_stops_whole_batch(self, issuance_service, ledger, certificate_rows):
        rows = [certificate_rows[0], ("X", "SHORT", "Bob", "Course", "01/01/2024", "01/01/2025")]

        with pytest.raises(ValidationError):
            await issuance_service.issue_batch(ISSUER_EMAIL, build_spreadsheet(rows), "rows.xlsx")

        assert ledger.submissions == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("row, message", [
        (("CERT0000000003", "CERT#000000003", "Bob", "Course", "01/01/2024", "01/01/2025"),
         messages.CERT_SPECIAL_CHARS),
        (("CERT0000000003", "CERT0000000003", "A" * 80, "Course", "01/01/2024", "01/01/2025"),
         messages.NAME_TOO_LONG.format(max=40)),
        (("CERT0000000003", "CERT0000000003", "Bob", "C" * 151, "01/01/2024", "01/01/2025"),
         messages.COURSE_TOO_LONG.format(max=150)),
    ])
    async def test_row_rules_match_single_issuance(
        self, issuance_service, ledger, db, certificate_rows, row, message
    ):
        rows = [certificate_rows[0], row]

        with pytest.raises(ValidationError) as exc_info:
            await issuance_service.issue_batch(ISSUER_EMAIL, build_spreadsheet(rows), "rows.xlsx")

        assert exc_info.value.message == message
        assert ledger.submissions == []
        assert await db["batchissues"].count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_spreadsheet_is_parsed_off_the_event_loop(
        self, issuance_service, certificate_rows, monkeypatch
    ):
        threads = []
        original_read = issuance_module.read_certificate_rows

        def recording_read(content):
            threads.append(threading.current_thread())
            return original_read(content)

        monkeypatch.setattr(issuance_module, "read_certificate_rows", recording_read)

        await issuance_service.issue_batch(ISSUER_EMAIL, build_spreadsheet(certificate_rows), "rows.xlsx")

        assert len(threads) == 1
        assert threads[0] is not threading.main_thread()

    @pytest.mark.asyncio
    async def test_spreadsheet_extension(self, issuance_service, certificate_rows):
        with pytest.raises(ArtifactError):
            await issuance_service.issue_batch(
                ISSUER_EMAIL, build_spreadsheet(certificate_rows), "certificates.csv"
            )


class TestBulkIssue:
    """Test zip-in, zip-out bulk issuance"""

    @pytest.fixture
    def bulk_archive(self, certificate_rows, template_pdf):
        return build_zip({
            "certificates.xlsx": build_spreadsheet(certificate_rows),
            "CERT0000000001.pdf": template_pdf,
            "CERT0000000002.pdf": template_pdf,
        })

    @staticmethod
    def archive_names(content: bytes):
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            return sorted(archive.namelist())

    @pytest.mark.asyncio
    async def test_bulk_batch(self, issuance_service, ledger, storage, bulk_archive, temp_uploads_dir):
        artifact = await issuance_service.bulk_issue(
            ISSUER_EMAIL, bulk_archive, "bulk.zip", IssuanceType.BATCH
        )

        assert self.archive_names(artifact.content) == [
            "CERT0000000001.pdf", "CERT0000000002.pdf", "certificates.xlsx"
        ]
        assert artifact.filename.endswith(".zip")
        assert [kind for kind, _ in ledger.submissions] == ["batch"]
        assert len(artifact.records) == 2
        assert storage.backups == [(artifact.filename, artifact.content, IssuanceType.BATCH)]
        assert os.listdir(temp_uploads_dir) == []

    @pytest.mark.asyncio
    async def test_bulk_single(self, issuance_service, ledger, storage, db, bulk_archive):
        artifact = await issuance_service.bulk_issue(
            ISSUER_EMAIL, bulk_archive, "bulk.zip", IssuanceType.SINGLE
        )

        assert [kind for kind, _ in ledger.submissions] == ["single", "single"]
        assert await db["issues"].count_documents({}) == 2
        assert storage.backups[0][2] == IssuanceType.SINGLE
        assert len(self.archive_names(artifact.content)) == 3

    @pytest.mark.asyncio
    async def test_missing_pdf_for_row(self, issuance_service, ledger, db, certificate_rows, template_pdf):
        rows = [certificate_rows[0], ("ABC123456789", "ABC123456789", "Bob", "Course", "01/01/2024", "01/01/2025")]
        archive = build_zip({
            "certificates.xlsx": build_spreadsheet(rows),
            "CERT0000000001.pdf": template_pdf,
            "CERT0000000002.pdf": template_pdf,
        })

        with pytest.raises(ValidationError) as exc_info:
            await issuance_service.bulk_issue(ISSUER_EMAIL, archive, "bulk.zip", IssuanceType.BATCH)

        assert exc_info.value.message == messages.NO_ENTRY_MATCH_FOUND
        assert exc_info.value.details == "ABC123456789"
        assert ledger.submissions == []
        assert await db["batchissues"].count_documents({}) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("issuance_type", [IssuanceType.BATCH, IssuanceType.SINGLE])
    async def test_row_with_special_characters(
        self, issuance_service, ledger, db, certificate_rows, template_pdf, issuance_type
    ):
        rows = [certificate_rows[0], ("CERT0000000002", "CERT?00000002", "Bob", "Course", "01/01/2024", "01/01/2025")]
        archive = build_zip({
            "certificates.xlsx": build_spreadsheet(rows),
            "CERT0000000001.pdf": template_pdf,
            "CERT0000000002.pdf": template_pdf,
        })

        with pytest.raises(ValidationError) as exc_info:
            await issuance_service.bulk_issue(ISSUER_EMAIL, archive, "bulk.zip", issuance_type)

        assert exc_info.value.message == messages.CERT_SPECIAL_CHARS
        assert exc_info.value.details == "CERT?00000002"
        assert ledger.submissions == []
        assert await db["batchissues"].count_documents({}) == 0
        assert await db["issues"].count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_extra_pdf(self, issuance_service, ledger, certificate_rows, template_pdf):
        archive = build_zip({
            "certificates.xlsx": build_spreadsheet(certificate_rows),
            "CERT0000000001.pdf": template_pdf,
            "CERT0000000002.pdf": template_pdf,
            "CERT0000000003.pdf": template_pdf,
        })

        with pytest.raises(ValidationError) as exc_info:
            await issuance_service.bulk_issue(ISSUER_EMAIL, archive, "bulk.zip", IssuanceType.SINGLE)

        assert exc_info.value.message == messages.INPUT_RECORDS_NOT_MATCHED
        assert ledger.submissions == []

    @pytest.mark.asyncio
    async def test_bad_template_in_archive(self, issuance_service, ledger, certificate_rows, template_pdf):
        archive = build_zip({
            "certificates.xlsx": build_spreadsheet(certificate_rows),
            "CERT0000000001.pdf": template_pdf,
            "CERT0000000002.pdf": build_pdf(pages=2),
        })

        with pytest.raises(ArtifactError):
            await issuance_service.bulk_issue(ISSUER_EMAIL, archive, "bulk.zip", IssuanceType.BATCH)

        assert ledger.submissions == []

    @pytest.mark.asyncio
    async def test_archive_without_spreadsheet(self, issuance_service, template_pdf):
        archive = build_zip({"CERT0000000001.pdf": template_pdf, "CERT0000000002.pdf": template_pdf})

        with pytest.raises(ArtifactError) as exc_info:
            await issuance_service.bulk_issue(ISSUER_EMAIL, archive, "bulk.zip", IssuanceType.BATCH)

        assert exc_info.value.message == messages.UNABLE_TO_FIND_EXCEL_FILES

    @pytest.mark.asyncio
    async def test_hidden_and_resource_fork_entries_are_ignored(
        self, issuance_service, certificate_rows, template_pdf
    ):
        archive = build_zip({
            "certificates.xlsx": build_spreadsheet(certificate_rows),
            "CERT0000000001.pdf": template_pdf,
            "CERT0000000002.pdf": template_pdf,
            "__MACOSX/._CERT0000000001.pdf": b"fork",
            ".DS_Store": b"finder",
        })

        artifact = await issuance_service.bulk_issue(ISSUER_EMAIL, archive, "bulk.zip", IssuanceType.BATCH)
        assert len(artifact.records) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content, filename", [
        (b"x" * 500, "bulk.rar"),
        (b"PK", "bulk.zip"),
    ])
    async def test_rejected_uploads(self, issuance_service, content, filename):
        with pytest.raises(ArtifactError):
            await issuance_service.bulk_issue(ISSUER_EMAIL, content, filename, IssuanceType.BATCH)

    @pytest.mark.asyncio
    async def test_store_failure_in_single_bulk_keeps_anchored_rows(
        self, issuance_service, ledger, bulk_archive, monkeypatch
    ):
        calls = []
        original_insert = issuance_service.store.insert_single

        async def flaky_insert(record):
            calls.append(record.certificate_number)
            if len(calls) == 2:
                raise PersistenceError(messages.DB_FAILED, details=str(PyMongoError("write failed")))
            return await original_insert(record)

        monkeypatch.setattr(issuance_service.store, "insert_single", flaky_insert)

        with pytest.raises(PersistenceError) as exc_info:
            await issuance_service.bulk_issue(ISSUER_EMAIL, bulk_archive, "bulk.zip", IssuanceType.SINGLE)

        assert exc_info.value.details["recordsStored"] == 1
        assert len(exc_info.value.details["transactionHashes"]) == 2
        assert len(ledger.certificates) == 2


class YieldingLedger(FakeLedger):
    """Hands control back to the event loop between the root-count read and the submission."""

    async def get_root_length(self) -> int:
        await asyncio.sleep(0)
        return await super().get_root_length()

    async def issue_batch(self, root):
        await asyncio.sleep(0)
        return await super().issue_batch(root)


class TestConcurrentBatches:
    """Test batch ids stay unique when batches are issued at the same time"""

    @pytest.fixture
    def ledger(self):
        return YieldingLedger()

    @pytest.mark.asyncio
    async def test_concurrent_batches_get_distinct_ids(self, issuance_service, verification_service, db):
        first_rows = [("CERTA000000001", "CERTA000000001", "Alice Doe", "Blockchain Basics", "01/15/2024", "01/15/2026")]
        second_rows = [("CERTB000000001", "CERTB000000001", "Bob Roe", "Smart Contracts", "01/15/2024", "01/15/2026")]

        first, second = await asyncio.gather(
            issuance_service.issue_batch(ISSUER_EMAIL, build_spreadsheet(first_rows), "first.xlsx"),
            issuance_service.issue_batch(ISSUER_EMAIL, build_spreadsheet(second_rows), "second.xlsx"),
        )

        assert {first.batch_id, second.batch_id} == {1, 2}
        assert await db["batchissues"].count_documents({}) == 2
        for certificate_id in ("CERTA000000001", "CERTB000000001"):
            response = await verification_service.verify_certificate_id(certificate_id)
            assert response.message == messages.CERT_VALID
