"""
Certificate record store.
Issuer lookups and single/batch certificate records in MongoDB.
"""

from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from ..core import messages
from ..core.errors import PersistenceError
from ..models.certificate import BatchCertificateRecord, CertificateRecord, IssuerAccount
from ..utils.logger import get_logger

logger = get_logger("record_service")

ISSUERS_COLLECTION = "issuers"
ISSUES_COLLECTION = "issues"
BATCH_ISSUES_COLLECTION = "batchissues"


class CertificateStore:
    """Reads issuers and reads/writes certificate records."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.issuers = db[ISSUERS_COLLECTION]
        self.issues = db[ISSUES_COLLECTION]
        self.batch_issues = db[BATCH_ISSUES_COLLECTION]

    async def _find_one(self, collection, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            return await collection.find_one(query)
        except PyMongoError as e:
            logger.error(f"Lookup in {collection.name} failed: {e}")
            raise PersistenceError(messages.DB_FAILED, details=str(e))

    async def find_issuer(self, email: str) -> Optional[IssuerAccount]:
        document = await self._find_one(self.issuers, {"email": email})
        if document is None:
            return None
        return IssuerAccount.model_validate(document)

    async def find_single(self, certificate_number: str) -> Optional[Dict[str, Any]]:
        return await self._find_one(self.issues, {"certificateNumber": certificate_number})

    async def find_batch(self, certificate_number: str) -> Optional[Dict[str, Any]]:
        return await self._find_one(self.batch_issues, {"certificateNumber": certificate_number})

    async def certificate_exists(self, certificate_number: str) -> bool:
        """True if the number is taken in either the single or the batch records."""
        if await self.find_single(certificate_number):
            return True
        return await self.find_batch(certificate_number) is not None

    async def insert_single(self, record: CertificateRecord) -> str:
        try:
            result = await self.issues.insert_one(record.to_document())
        except PyMongoError as e:
            logger.error(f"Insert of certificate {record.certificate_number} failed: {e}")
            raise PersistenceError(messages.DB_FAILED, details=str(e))
        return str(result.inserted_id)

    async def insert_batch(self, record: BatchCertificateRecord) -> str:
        try:
            result = await self.batch_issues.insert_one(record.to_document())
        except PyMongoError as e:
            logger.error(f"Insert of batch certificate {record.certificate_number} failed: {e}")
            raise PersistenceError(messages.DB_FAILED, details=str(e))
        return str(result.inserted_id)

    async def increment_issued(self, issuer_id: str, count: int = 1) -> None:
        try:
            await self.issuers.update_one(
                {"issuerId": issuer_id},
                {"$inc": {"certificatesIssued": count}}
            )
        except PyMongoError as e:
            logger.error(f"Issued-count update for {issuer_id} failed: {e}")
            raise PersistenceError(messages.DB_FAILED, details=str(e))
