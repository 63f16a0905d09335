"""
Error taxonomy for certificate issuance and verification.
Services raise these; the application turns them into the response envelope.
"""

from typing import Any, Optional

from fastapi import status


class CertificateServiceError(Exception):
    """Base error carrying an HTTP status and a stable user-facing message."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> dict:
        content = {
            "code": self.status_code,
            "status": "FAILED",
            "message": self.message,
        }
        if self.details is not None:
            content["details"] = self.details
        return content


class ValidationError(CertificateServiceError):
    """Bad, missing or duplicate input."""


class AuthorizationError(CertificateServiceError):
    """Issuer is unknown, not approved, or lacks the on-chain role."""


class ChainError(CertificateServiceError):
    """The ledger rejected the call (revert, paused contract, role mismatch)."""


class ChainUnavailableError(CertificateServiceError):
    """Submission gave up after transient failures; no state change is assumed."""


class PersistenceError(CertificateServiceError):
    """Database failure, possibly after a transaction was already mined."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class ArtifactError(CertificateServiceError):
    """Malformed PDF, QR, spreadsheet or archive."""
