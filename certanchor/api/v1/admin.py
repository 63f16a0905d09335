"""
Administration API endpoints.
Issuer role management, balance checks and bulk backup search.
"""

from fastapi import APIRouter, Depends, Query

from ...core import messages
from ...core.dependencies import get_admin_service, get_storage_service
from ...models.certificate import BackupSearchRequest, RoleRequest, ServiceResponse
from ...services.admin_service import AdminService
from ...services.storage_service import StorageService

router = APIRouter(
    prefix="/api/v1",
    tags=["admin"],
    responses={
        400: {"description": "Invalid input or chain error"},
        500: {"description": "Internal server error"}
    }
)


@router.post("/grant-role", response_model=ServiceResponse, summary="Grant Issuer Role")
async def grant_role(request: RoleRequest, service: AdminService = Depends(get_admin_service)):
    return await service.grant_issuer_role(request.address)


@router.post("/revoke-role", response_model=ServiceResponse, summary="Revoke Issuer Role")
async def revoke_role(request: RoleRequest, service: AdminService = Depends(get_admin_service)):
    return await service.revoke_issuer_role(request.address)


@router.get("/check-balance", response_model=ServiceResponse, summary="Check Balance")
async def check_balance(
    address: str = Query(..., min_length=42, max_length=42),
    service: AdminService = Depends(get_admin_service)
):
    return await service.check_balance(address)


@router.post("/get-bulk-backup", response_model=ServiceResponse, summary="Search Bulk Backups")
async def get_bulk_backup(
    request: BackupSearchRequest,
    storage: StorageService = Depends(get_storage_service)
):
    urls = await storage.search_backups(request.search, request.category)
    return ServiceResponse(message=messages.FILES_FETCHED, details=urls)
