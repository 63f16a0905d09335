"""
MongoDB client lifecycle for CertAnchor Backend.
One Motor client per process, opened in the app lifespan and handed to
routes through DatabaseDep.
"""

from typing import Optional

from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from ..core.config import get_settings
from ..utils.logger import get_logger

logger = get_logger("database")

SERVER_SELECTION_TIMEOUT_MS = 5000

# Certificate numbers are looked up in both collections on every issuance
CERTIFICATE_INDEXES = {
    "issues": "certificateNumber",
    "batchissues": "certificateNumber",
    "issuers": "email",
}

_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def ensure_indexes(database: AsyncIOMotorDatabase) -> None:
    for collection, key in CERTIFICATE_INDEXES.items():
        await database[collection].create_index([(key, ASCENDING)])


async def connect_to_mongo() -> AsyncIOMotorDatabase:
    """
    Open the client, ping the server and create lookup indexes.

    Raises:
        PyMongoError: If the server cannot be reached
    """
    global _client, _database

    settings = get_settings()
    client = AsyncIOMotorClient(settings.mongodb_url, serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS)
    try:
        await client.admin.command("ping")
        database = client[settings.database_name]
        await ensure_indexes(database)
    except PyMongoError as e:
        client.close()
        logger.error(f"MongoDB unavailable at startup: {e}")
        raise

    _client, _database = client, database
    logger.info(f"Connected to MongoDB database '{settings.database_name}'")
    return database


async def close_mongo_connection() -> None:
    global _client, _database

    if _client is None:
        return
    _client.close()
    _client, _database = None, None
    logger.info("MongoDB connection closed")


def get_database() -> AsyncIOMotorDatabase:
    if _database is None:
        raise RuntimeError("MongoDB is not connected; connect_to_mongo() runs in the app lifespan")
    return _database


async def get_database_dependency() -> AsyncIOMotorDatabase:
    return get_database()


DatabaseDep = Depends(get_database_dependency)
