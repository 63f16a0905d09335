"""
Ledger administration: issuer role grants and account balances.
"""

from decimal import ROUND_HALF_UP, Decimal

from .blockchain_service import BlockchainGateway
from ..core import messages
from ..core.errors import ChainUnavailableError, ValidationError
from ..models.certificate import ServiceResponse
from ..utils.logger import get_logger

logger = get_logger("admin_service")


class AdminService:
    """Grants and revokes the issuer role and reports balances."""

    def __init__(self, gateway: BlockchainGateway):
        self.gateway = gateway

    def _require_address(self, address: str) -> None:
        if not self.gateway.is_valid_address(address):
            raise ValidationError(messages.INVALID_ETHEREUM, details=address)

    async def grant_issuer_role(self, address: str) -> ServiceResponse:
        self._require_address(address)
        if await self.gateway.has_issuer_role(address):
            raise ValidationError(messages.ROLE_ALREADY_GRANTED, details=address)

        receipt = await self.gateway.grant_role(self.gateway.issuer_role, address)
        if receipt is None:
            raise ChainUnavailableError(messages.FAILED_TO_ISSUE_AFTER_RETRY, details=address)

        logger.info(f"Issuer role granted to {address} in {receipt.transaction_hash}")
        return ServiceResponse(message=messages.ROLE_GRANTED, details=receipt.link)

    async def revoke_issuer_role(self, address: str) -> ServiceResponse:
        self._require_address(address)
        if not await self.gateway.has_issuer_role(address):
            raise ValidationError(messages.ROLE_NOT_GRANTED, details=address)

        receipt = await self.gateway.revoke_role(self.gateway.issuer_role, address)
        if receipt is None:
            raise ChainUnavailableError(messages.FAILED_TO_ISSUE_AFTER_RETRY, details=address)

        logger.info(f"Issuer role revoked from {address} in {receipt.transaction_hash}")
        return ServiceResponse(message=messages.ROLE_REVOKED, details=receipt.link)

    async def check_balance(self, address: str) -> ServiceResponse:
        self._require_address(address)
        balance = await self.gateway.get_balance(address)
        rounded = Decimal(balance).quantize(Decimal("0.001"), rounding=ROUND_HALF_UP)
        return ServiceResponse(message=messages.BALANCE_CHECK, details={"balance": str(rounded)})
