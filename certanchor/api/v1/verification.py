"""
Certificate verification API endpoints.
"""

from fastapi import APIRouter, Depends, File, UploadFile

from ...core.dependencies import get_verification_service
from ...models.certificate import DecodeCertificateRequest, ServiceResponse, VerifyIdRequest
from ...services.verification_service import VerificationService

router = APIRouter(
    prefix="/api/v1",
    tags=["verification"],
    responses={
        400: {"description": "Certificate not valid"},
        422: {"description": "Request validation failed"}
    }
)


@router.post(
    "/verify",
    response_model=ServiceResponse,
    summary="Verify Certificate PDF",
    description="Read the QR code of an issued certificate PDF"
)
async def verify_certificate(
    pdfFile: UploadFile = File(...),
    service: VerificationService = Depends(get_verification_service)
):
    return await service.verify_pdf(await pdfFile.read(), pdfFile.filename or "")


@router.post(
    "/verify-certification-id",
    response_model=ServiceResponse,
    summary="Verify Certificate ID",
    description="Check a certificate ID against stored records and the blockchain"
)
async def verify_certification_id(
    request: VerifyIdRequest,
    service: VerificationService = Depends(get_verification_service)
):
    return await service.verify_certificate_id(request.id)


@router.post(
    "/verify-decrypt",
    response_model=ServiceResponse,
    summary="Decode Certificate Payload",
    description="Decrypt the payload carried by a certificate QR code"
)
async def decode_certificate(
    request: DecodeCertificateRequest,
    service: VerificationService = Depends(get_verification_service)
):
    return service.decode_certificate(request.encrypted_data, request.iv)
