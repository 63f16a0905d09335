"""
Main FastAPI application entry point for CertAnchor Backend.
Configures the application, middleware, routes and error envelopes.
"""

import asyncio
import os
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .api.v1.admin import router as admin_router
from .api.v1.health import router as health_router
from .api.v1.issuance import router as issuance_router
from .api.v1.verification import router as verification_router
from .core import messages
from .core.config import get_settings
from .core.errors import CertificateServiceError
from .core.middleware import setup_middleware_stack
from .db.mongo import close_mongo_connection, connect_to_mongo
from .services.blockchain_service import BlockchainGateway
from .services.storage_service import StorageService
from .utils.logger import get_logger, setup_logger
from .utils.workspace import run_upload_sweeper

settings = get_settings()
setup_logger(level=settings.log_level)
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Open MongoDB, the chain gateway and object storage; run the upload sweeper.
    """
    logger.info("Starting CertAnchor Backend...")
    try:
        await connect_to_mongo()
        app.state.blockchain_gateway = BlockchainGateway.from_settings(settings)
        app.state.storage_service = StorageService.from_settings(settings)
        os.makedirs(settings.uploads_dir, exist_ok=True)
        logger.info("Startup complete")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    sweeper = asyncio.create_task(run_upload_sweeper(settings.uploads_dir, settings.upload_sweep_hour))

    yield

    logger.info("Shutting down CertAnchor Backend...")
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await close_mongo_connection()
    logger.info("Shutdown complete")


app = FastAPI(
    title="CertAnchor Backend API",
    description="Blockchain-anchored certificate issuance and verification",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

setup_middleware_stack(app)

app.include_router(health_router)
app.include_router(issuance_router)
app.include_router(verification_router)
app.include_router(admin_router)


@app.exception_handler(CertificateServiceError)
async def certificate_error_handler(request: Request, exc: CertificateServiceError):
    """
    Render domain errors as the FAILED response envelope.
    """
    logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Schema violations use the same FAILED envelope, with pydantic error locations.
    """
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={
            "code": 422,
            "status": "FAILED",
            "message": messages.VALIDATION_FAILED,
            "details": [
                {"loc": list(error.get("loc", [])), "msg": error.get("msg")}
                for error in exc.errors()
            ]
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Anything unclassified is logged with its traceback and reported as a bare 500.
    """
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"code": 500, "status": "FAILED", "message": messages.INTERNAL_ERROR}
    )


@app.get("/", summary="Root Endpoint", tags=["root"])
async def root():
    return {
        "message": "Welcome to CertAnchor Backend API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/v1/health"
    }
