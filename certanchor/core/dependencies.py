"""
Service dependencies for FastAPI routes.
Long-lived clients (chain gateway, object storage) live on app.state and are
built on first use; request-scoped services are assembled per request.
"""

from fastapi import Depends, Request
from motor.motor_asyncio import AsyncIOMotorDatabase

from .config import Settings, get_settings
from ..db.mongo import DatabaseDep
from ..services.admin_service import AdminService
from ..services.blockchain_service import BlockchainGateway
from ..services.issuance_service import IssuanceService
from ..services.pdf_service import PDFService
from ..services.qr_extraction_service import QRExtractionService
from ..services.qr_service import QRCodeService
from ..services.record_service import CertificateStore
from ..services.storage_service import StorageService
from ..services.verification_service import VerificationService


def get_settings_dependency() -> Settings:
    return get_settings()


SettingsDep = Depends(get_settings_dependency)


def get_blockchain_gateway(request: Request, settings: Settings = SettingsDep) -> BlockchainGateway:
    gateway = getattr(request.app.state, "blockchain_gateway", None)
    if gateway is None:
        gateway = BlockchainGateway.from_settings(settings)
        request.app.state.blockchain_gateway = gateway
    return gateway


def get_storage_service(request: Request, settings: Settings = SettingsDep) -> StorageService:
    storage = getattr(request.app.state, "storage_service", None)
    if storage is None:
        storage = StorageService.from_settings(settings)
        request.app.state.storage_service = storage
    return storage


def get_qr_service(settings: Settings = SettingsDep) -> QRCodeService:
    return QRCodeService(settings.encryption_key, settings.verification_base_url)


def get_issuance_service(
    db: AsyncIOMotorDatabase = DatabaseDep,
    gateway: BlockchainGateway = Depends(get_blockchain_gateway),
    storage: StorageService = Depends(get_storage_service),
    qr_service: QRCodeService = Depends(get_qr_service),
    settings: Settings = SettingsDep
) -> IssuanceService:
    return IssuanceService(
        store=CertificateStore(db),
        gateway=gateway,
        settings=settings,
        qr_service=qr_service,
        pdf_service=PDFService(),
        qr_extraction=QRExtractionService(qr_service),
        storage=storage,
    )


def get_verification_service(
    db: AsyncIOMotorDatabase = DatabaseDep,
    gateway: BlockchainGateway = Depends(get_blockchain_gateway),
    qr_service: QRCodeService = Depends(get_qr_service),
    settings: Settings = SettingsDep
) -> VerificationService:
    return VerificationService(
        store=CertificateStore(db),
        gateway=gateway,
        settings=settings,
        pdf_service=PDFService(),
        qr_extraction=QRExtractionService(qr_service),
    )


def get_admin_service(gateway: BlockchainGateway = Depends(get_blockchain_gateway)) -> AdminService:
    return AdminService(gateway)
