"""
Certificate issuance API endpoints.
Single, PDF, batch and bulk-from-zip issuance.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from pydantic import EmailStr

from ...core.dependencies import get_issuance_service
from ...models.certificate import (
    CERTIFICATE_NUMBER_PATTERN,
    COURSE_MAX_LENGTH,
    NAME_MAX_LENGTH,
    BatchIssueResponse,
    CertificateInput,
    IssueCertificateRequest,
    IssueCertificateResponse,
)
from ...services.issuance_service import IssuanceArtifact, IssuanceService
from ...services.storage_service import IssuanceType
from ...utils.logger import get_logger

logger = get_logger("issuance_api")

router = APIRouter(
    prefix="/api/v1",
    tags=["issuance"],
    responses={
        400: {"description": "Validation, chain or file error"},
        422: {"description": "Request validation failed"},
        500: {"description": "Internal server error"}
    }
)


def artifact_response(artifact: IssuanceArtifact) -> Response:
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'}
    )


@router.post(
    "/issue",
    response_model=IssueCertificateResponse,
    response_model_by_alias=True,
    summary="Issue Certificate",
    description="Anchor a certificate on-chain and return its verification QR code"
)
async def issue_certificate(
    request: IssueCertificateRequest,
    service: IssuanceService = Depends(get_issuance_service)
):
    logger.info(f"Issue request for {request.certificate_number} from {request.email}")
    return await service.issue_certificate(request.email, request.to_input())


@router.post(
    "/issue-pdf",
    summary="Issue Certificate PDF",
    description="Anchor a certificate on-chain and stamp its QR code onto the uploaded template",
    response_class=Response,
    responses={200: {"content": {"application/pdf": {}}}}
)
async def issue_pdf_certificate(
    email: EmailStr = Form(...),
    certificateNumber: str = Form(..., min_length=1, pattern=CERTIFICATE_NUMBER_PATTERN),
    name: str = Form(..., min_length=1, max_length=NAME_MAX_LENGTH),
    course: str = Form(..., min_length=1, max_length=COURSE_MAX_LENGTH),
    grantDate: str = Form(..., min_length=1),
    expirationDate: str = Form(..., min_length=1),
    file: UploadFile = File(...),
    service: IssuanceService = Depends(get_issuance_service)
):
    data = CertificateInput(
        certificate_number=certificateNumber,
        name=name,
        course=course,
        grant_date=grantDate,
        expiration_date=expirationDate,
    )
    logger.info(f"PDF issue request for {certificateNumber} from {email}")
    artifact = await service.issue_pdf_certificate(email, data, await file.read(), file.filename or "")
    return artifact_response(artifact)


@router.post(
    "/batch-certificate-issue",
    response_model=BatchIssueResponse,
    response_model_by_alias=True,
    summary="Batch Issue Certificates",
    description="Anchor every row of an Excel sheet under a single Merkle root"
)
async def batch_issue_certificates(
    email: EmailStr = Form(...),
    excelFile: UploadFile = File(...),
    service: IssuanceService = Depends(get_issuance_service)
):
    logger.info(f"Batch issue request from {email}")
    return await service.issue_batch(email, await excelFile.read(), excelFile.filename or "")


@router.post(
    "/bulk-single-issue",
    summary="Bulk Single Issuance",
    description="Issue each certificate of a zip archive in its own transaction",
    response_class=Response,
    responses={200: {"content": {"application/zip": {}}}}
)
async def bulk_single_issue(
    email: EmailStr = Form(...),
    zipFile: UploadFile = File(...),
    service: IssuanceService = Depends(get_issuance_service)
):
    logger.info(f"Bulk single issue request from {email}")
    artifact = await service.bulk_issue(
        email, await zipFile.read(), zipFile.filename or "", IssuanceType.SINGLE
    )
    return artifact_response(artifact)


@router.post(
    "/bulk-batch-issue",
    summary="Bulk Batch Issuance",
    description="Issue all certificates of a zip archive under one Merkle root",
    response_class=Response,
    responses={200: {"content": {"application/zip": {}}}}
)
async def bulk_batch_issue(
    email: EmailStr = Form(...),
    zipFile: UploadFile = File(...),
    service: IssuanceService = Depends(get_issuance_service)
):
    logger.info(f"Bulk batch issue request from {email}")
    artifact = await service.bulk_issue(
        email, await zipFile.read(), zipFile.filename or "", IssuanceType.BATCH
    )
    return artifact_response(artifact)
