"""
Certificate, issuer and API envelope models.
Database documents use camelCase keys; models expose snake_case attributes
with camelCase aliases.
"""

from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

CERTIFICATE_NUMBER_PATTERN = r'^[^!@#$%^&*(),.?":{}|<>]+$'
NAME_MAX_LENGTH = 40
COURSE_MAX_LENGTH = 150


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IssuerStatus(IntEnum):
    """Approval state of an issuer account."""
    APPROVED = 1
    REJECTED = 2


class CertificateStatus(IntEnum):
    ISSUED = 1


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class IssuerAccount(CamelModel):
    """Issuer as stored by the user-management subsystem (read-only here)."""

    email: str
    issuer_id: Optional[str] = Field(None, alias="issuerId")
    status: Optional[int] = None
    certificates_issued: int = Field(0, alias="certificatesIssued")

    @property
    def is_approved(self) -> bool:
        return self.status == IssuerStatus.APPROVED


class CertificateRecord(CamelModel):
    """A certificate issued with its own transaction."""

    issuer_id: str = Field(..., alias="issuerId")
    transaction_hash: str = Field(..., alias="transactionHash")
    certificate_hash: str = Field(..., alias="certificateHash")
    certificate_number: str = Field(..., alias="certificateNumber")
    name: str
    course: str
    grant_date: str = Field(..., alias="grantDate")
    expiration_date: str = Field(..., alias="expirationDate")
    certificate_status: int = Field(CertificateStatus.ISSUED, alias="certificateStatus")
    issue_date: datetime = Field(default_factory=utc_now, alias="issueDate")


class BatchCertificateRecord(CamelModel):
    """One leaf of a batch; all leaves of a batch share the root transaction."""

    issuer_id: str = Field(..., alias="issuerId")
    batch_id: int = Field(..., alias="batchId")
    proof_hash: List[str] = Field(..., alias="proofHash", description="Merkle proof, 0x-hex nodes")
    encoded_proof: str = Field(..., alias="encodedProof", description="keccak256 of the proof")
    transaction_hash: str = Field(..., alias="transactionHash")
    certificate_hash: str = Field(..., alias="certificateHash")
    certificate_number: str = Field(..., alias="certificateNumber")
    name: str
    course: str
    grant_date: str = Field(..., alias="grantDate")
    expiration_date: str = Field(..., alias="expirationDate")
    issue_date: datetime = Field(default_factory=utc_now, alias="issueDate")


class CertificateInput(CamelModel):
    """Fields needed to issue one certificate."""

    certificate_number: str = Field("", alias="certificateNumber")
    name: str = ""
    course: str = ""
    grant_date: str = Field("", alias="grantDate")
    expiration_date: str = Field("", alias="expirationDate")


# Requests

class IssueCertificateRequest(CamelModel):
    email: EmailStr
    certificate_number: str = Field(
        ..., alias="certificateNumber", min_length=1, pattern=CERTIFICATE_NUMBER_PATTERN
    )
    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    course: str = Field(..., min_length=1, max_length=COURSE_MAX_LENGTH)
    grant_date: str = Field(..., alias="grantDate", min_length=1)
    expiration_date: str = Field(..., alias="expirationDate", min_length=1)

    def to_input(self) -> CertificateInput:
        return CertificateInput(**self.model_dump(exclude={"email"}))


class VerifyIdRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=20)


class DecodeCertificateRequest(CamelModel):
    encrypted_data: str = Field(..., alias="encryptedData", min_length=1)
    iv: str = Field(..., min_length=1)


class RoleRequest(BaseModel):
    address: str = Field(..., min_length=42, max_length=42)


class BackupSearchRequest(BaseModel):
    search: str = Field(..., min_length=1)
    category: int


# Responses

class ServiceResponse(CamelModel):
    """Envelope returned by every JSON endpoint."""

    code: int = 200
    status: str = "SUCCESS"
    message: str
    details: Optional[Any] = None


class IssueCertificateResponse(ServiceResponse):
    qr_code_image: str = Field(..., alias="qrCodeImage")
    polygon_link: str = Field(..., alias="polygonLink")


class BatchIssueResponse(ServiceResponse):
    polygon_link: str = Field(..., alias="polygonLink")
    batch_id: int = Field(..., alias="batchId")
