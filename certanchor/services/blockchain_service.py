"""
Blockchain gateway for the certificate registry contract.
Wraps reads, signed submissions and the pre-submission guards, with a bounded
retry on transient network failures.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.middleware import ExtraDataToPOAMiddleware

from ..core import messages
from ..core.config import Settings
from ..core.errors import (
    AuthorizationError,
    ChainError,
    ValidationError,
)
from ..utils.logger import get_logger

logger = get_logger("blockchain_service")

POA_CHAIN_IDS = (80001, 80002, 137)

# Failures worth another attempt; anything else aborts immediately
TRANSIENT_CHAIN_ERRORS = (
    TimeoutError,
    asyncio.TimeoutError,
    TimeExhausted,
    aiohttp.ServerTimeoutError,
    aiohttp.ClientConnectorError,
)

REVERT_PREFIX = "execution reverted:"

CERTIFICATE_REGISTRY_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "string", "name": "certificateNumber", "type": "string"},
            {"internalType": "string", "name": "certificateHash", "type": "string"}
        ],
        "name": "issueCertificate",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "bytes32", "name": "rootHash", "type": "bytes32"}],
        "name": "issueBatchOfCertificates",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "string", "name": "certificateNumber", "type": "string"}],
        "name": "verifyCertificateById",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "batchNumber", "type": "uint256"},
            {"internalType": "string", "name": "certificateHash", "type": "string"},
            {"internalType": "bytes32[]", "name": "proof", "type": "bytes32[]"}
        ],
        "name": "verifyCertificateInBatch",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getRootLength",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "paused",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "bytes32", "name": "role", "type": "bytes32"},
            {"internalType": "address", "name": "account", "type": "address"}
        ],
        "name": "hasRole",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "bytes32", "name": "role", "type": "bytes32"},
            {"internalType": "address", "name": "account", "type": "address"}
        ],
        "name": "grantRole",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "bytes32", "name": "role", "type": "bytes32"},
            {"internalType": "address", "name": "account", "type": "address"}
        ],
        "name": "revokeRole",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


@dataclass
class ChainReceipt:
    """Hash of a sent transaction and its block explorer link."""
    transaction_hash: str
    link: str


def extract_revert_reason(error: Exception) -> Optional[str]:
    """Return the contract's revert reason, without the RPC prefix."""
    reason = getattr(error, "message", None) or (error.args[0] if error.args else None)
    if not isinstance(reason, str) or not reason.strip():
        return None
    reason = reason.strip()
    if reason.startswith(REVERT_PREFIX):
        reason = reason[len(REVERT_PREFIX):].strip()
    return reason or None


def _to_bytes32(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


class BlockchainGateway:
    """Injectable access point to the certificate registry contract."""

    def __init__(
        self,
        w3: Optional[AsyncWeb3],
        contract: Any,
        account: Optional[Any] = None,
        network: str = "amoy.polygonscan.com",
        chain_id: int = 80002,
        issuer_role: Optional[str] = None,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        gas_limit: Optional[int] = None
    ):
        self.w3 = w3
        self.contract = contract
        self.account = account
        self.network = network
        self.chain_id = chain_id
        self.issuer_role = issuer_role or Web3.to_hex(Web3.keccak(text="ISSUER_ROLE"))
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.gas_limit = gas_limit
        # Batch ids come from the root count, so reading it and submitting must not interleave
        self._batch_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "BlockchainGateway":
        """Build the process-wide gateway from configuration."""
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.rpc_url))
        if settings.chain_id in POA_CHAIN_IDS:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        contract = None
        if settings.contract_address:
            contract = w3.eth.contract(
                address=Web3.to_checksum_address(settings.contract_address),
                abi=CERTIFICATE_REGISTRY_ABI
            )
        else:
            logger.warning("No contract address configured - chain operations will fail")

        account = None
        if settings.private_key:
            account = Account.from_key(settings.private_key)
        else:
            logger.warning("No private key provided - gateway is read-only")

        return cls(
            w3=w3,
            contract=contract,
            account=account,
            network=settings.network,
            chain_id=settings.chain_id,
            issuer_role=settings.issuer_role,
            max_attempts=settings.chain_retry_attempts,
            retry_delay=settings.chain_retry_delay,
            gas_limit=settings.gas_limit
        )

    def transaction_link(self, transaction_hash: str) -> str:
        return f"https://{self.network}/tx/{transaction_hash}"

    @staticmethod
    def is_valid_address(address: Optional[str]) -> bool:
        return bool(address) and Web3.is_address(address)

    async def is_connected(self) -> bool:
        return await self.w3.is_connected()

    # Reads

    @property
    def functions(self):
        if self.contract is None:
            raise ChainError(messages.FAILED_OPS_AT_BLOCKCHAIN, details="Contract not configured")
        return self.contract.functions

    async def _call(self, description: str, function_call) -> Any:
        try:
            return await function_call.call()
        except ContractLogicError as e:
            reason = extract_revert_reason(e) or messages.FAILED_OPS_AT_BLOCKCHAIN
            logger.error(f"{description} reverted: {reason}")
            raise ChainError(reason)
        except Exception as e:
            logger.error(f"{description} failed: {e}")
            raise ChainError(messages.FAILED_OPS_AT_BLOCKCHAIN, details=str(e))

    async def is_paused(self) -> bool:
        return bool(await self._call("paused", self.functions.paused()))

    async def has_role(self, role: str, address: str) -> bool:
        function_call = self.functions.hasRole(
            _to_bytes32(role), Web3.to_checksum_address(address)
        )
        return bool(await self._call("hasRole", function_call))

    async def has_issuer_role(self, address: str) -> bool:
        return await self.has_role(self.issuer_role, address)

    async def verify_by_id(self, certificate_number: str) -> bool:
        function_call = self.functions.verifyCertificateById(certificate_number)
        return bool(await self._call("verifyCertificateById", function_call))

    async def verify_in_batch(
        self,
        batch_index: int,
        certificate_hash: str,
        proof: Sequence[str]
    ) -> bool:
        function_call = self.functions.verifyCertificateInBatch(
            batch_index, certificate_hash, [_to_bytes32(node) for node in proof]
        )
        return bool(await self._call("verifyCertificateInBatch", function_call))

    async def get_root_length(self) -> int:
        return int(await self._call("getRootLength", self.functions.getRootLength()))

    async def get_balance(self, address: str) -> Decimal:
        """Native balance of an address in ether."""
        try:
            balance_wei = await self.w3.eth.get_balance(Web3.to_checksum_address(address))
        except Exception as e:
            logger.error(f"Balance lookup failed for {address}: {e}")
            raise ChainError(messages.FAILED_OPS_AT_BLOCKCHAIN, details=str(e))
        return Decimal(Web3.from_wei(balance_wei, "ether"))

    # Guards

    async def ensure_can_issue(
        self,
        issuer_address: str,
        certificate_numbers: Sequence[str] = ()
    ) -> None:
        """
        Run every check that must pass before a state-changing submission.

        Raises:
            ChainError: If the contract is paused
            ValidationError: If the issuer address is malformed or a
                certificate number is already on-chain
            AuthorizationError: If the issuer lacks the issuer role
        """
        if await self.is_paused():
            raise ChainError(messages.OPS_RESTRICTED)

        if not self.is_valid_address(issuer_address):
            raise ValidationError(messages.INVALID_ETHEREUM, details=issuer_address)

        if not await self.has_issuer_role(issuer_address):
            raise AuthorizationError(messages.ISSUER_UNAUTHORIZED, details=issuer_address)

        for certificate_number in certificate_numbers:
            if await self.verify_by_id(certificate_number):
                raise ValidationError(messages.CERT_ISSUED, details=certificate_number)

    # Submissions

    async def _send_transaction(self, function_call) -> str:
        """Build, sign and broadcast a contract call; returns the 0x tx hash."""
        if self.account is None:
            raise ChainError(messages.NO_SIGNER)

        params = {
            "from": self.account.address,
            "nonce": await self.w3.eth.get_transaction_count(self.account.address),
            "gasPrice": await self.w3.eth.gas_price,
            "chainId": self.chain_id,
        }
        if self.gas_limit:
            params["gas"] = self.gas_limit

        transaction = await function_call.build_transaction(params)
        signed_txn = self.account.sign_transaction(transaction)
        tx_hash = await self.w3.eth.send_raw_transaction(signed_txn.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def submit_with_retry(self, description: str, build_call) -> Optional[ChainReceipt]:
        """
        Submit a transaction, retrying only transient network failures.

        Args:
            description: Label for logs
            build_call: Zero-argument callable returning the contract function call

        Returns:
            ChainReceipt, or None once all attempts timed out

        Raises:
            ChainError: On a revert or any non-transient failure (never retried)
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                tx_hash = await self._send_transaction(build_call())
                logger.info(f"{description} sent on attempt {attempt}: {tx_hash}")
                return ChainReceipt(transaction_hash=tx_hash, link=self.transaction_link(tx_hash))
            except TRANSIENT_CHAIN_ERRORS as e:
                logger.warning(
                    f"{description} timed out (attempt {attempt}/{self.max_attempts}): {e}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay)
            except ContractLogicError as e:
                reason = extract_revert_reason(e) or messages.FAILED_OPS_AT_BLOCKCHAIN
                logger.error(f"{description} reverted: {reason}")
                raise ChainError(reason)
            except ChainError:
                raise
            except Exception as e:
                reason = extract_revert_reason(e) or messages.FAILED_OPS_AT_BLOCKCHAIN
                logger.error(f"{description} failed: {e}")
                raise ChainError(reason, details=str(e))

        logger.error(f"{description} gave up after {self.max_attempts} attempts")
        return None

    async def issue_single(self, certificate_number: str, certificate_hash: str) -> Optional[ChainReceipt]:
        return await self.submit_with_retry(
            f"issueCertificate({certificate_number})",
            lambda: self.functions.issueCertificate(certificate_number, certificate_hash)
        )

    async def issue_batch(self, root: str) -> Optional[ChainReceipt]:
        return await self.submit_with_retry(
            f"issueBatchOfCertificates({root})",
            lambda: self.functions.issueBatchOfCertificates(_to_bytes32(root))
        )

    async def grant_role(self, role: str, address: str) -> Optional[ChainReceipt]:
        return await self.submit_with_retry(
            f"grantRole({address})",
            lambda: self.functions.grantRole(
                _to_bytes32(role), Web3.to_checksum_address(address)
            )
        )

    async def revoke_role(self, role: str, address: str) -> Optional[ChainReceipt]:
        return await self.submit_with_retry(
            f"revokeRole({address})",
            lambda: self.functions.revokeRole(
                _to_bytes32(role), Web3.to_checksum_address(address)
            )
        )

    async def issue_batch_sequenced(self, root: str) -> Tuple[int, Optional[ChainReceipt]]:
        """
        Submit a batch root and return the batch id it will occupy.

        The id is the root count plus one; concurrent batches in this process
        are serialized so no two of them read the same count.

        Returns:
            (batch_id, receipt); receipt is None once all attempts timed out
        """
        async with self._batch_lock:
            batch_id = await self.get_root_length() + 1
            receipt = await self.issue_batch(root)
        return batch_id, receipt
