"""
Health check API endpoints.
Liveness for the container runtime, readiness across MongoDB and the chain RPC.
"""

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ...core.dependencies import get_blockchain_gateway
from ...db.mongo import DatabaseDep
from ...services.blockchain_service import TRANSIENT_CHAIN_ERRORS, BlockchainGateway
from ...utils.logger import get_logger

logger = get_logger("health")

SERVICE_NAME = "CertAnchor Backend"
SERVICE_VERSION = "1.0.0"

router = APIRouter(prefix="/api/v1", tags=["health"])


def _service_status(status: str, **extra: Any) -> Dict[str, Any]:
    return {
        "status": status,
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": int(time.time()),
        **extra,
    }


async def _database_healthy(db: AsyncIOMotorDatabase) -> bool:
    try:
        await db.command("ping")
        return True
    except PyMongoError as e:
        logger.error(f"Database ping failed: {e}")
        return False


@router.get("/health", summary="Health Check")
async def health_check(db: AsyncIOMotorDatabase = DatabaseDep):
    """Service status plus database reachability."""
    healthy = await _database_healthy(db)
    return _service_status("ok" if healthy else "error", database="connected" if healthy else "disconnected")


@router.get(
    "/health/ready",
    summary="Readiness Check",
    description="Ready only when MongoDB and the blockchain RPC both answer"
)
async def readiness_check(
    db: AsyncIOMotorDatabase = DatabaseDep,
    gateway: BlockchainGateway = Depends(get_blockchain_gateway)
):
    try:
        chain_up = await gateway.is_connected()
    except TRANSIENT_CHAIN_ERRORS as e:
        logger.error(f"Blockchain RPC unreachable: {e}")
        chain_up = False

    dependencies = {
        "database": "healthy" if await _database_healthy(db) else "unhealthy",
        "blockchain": "healthy" if chain_up else "unhealthy",
    }
    ready = all(state == "healthy" for state in dependencies.values())
    body = _service_status("ready" if ready else "not_ready", dependencies=dependencies)
    return JSONResponse(status_code=200 if ready else 503, content=body)


@router.get("/health/live", summary="Liveness Check")
async def liveness_check():
    return _service_status("alive")
