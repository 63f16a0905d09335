"""
Merkle tree builder for batch issuance.
Reproduces OpenZeppelin's StandardMerkleTree for single-string leaves so that
roots and proofs verify against the issuing contract.
"""

from dataclasses import dataclass
from typing import List, Sequence

from eth_abi import encode as abi_encode
from web3 import Web3

from ..utils.logger import get_logger

logger = get_logger("merkle_service")

LEAF_ENCODING = ["string"]


def _to_bytes(value) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


@dataclass
class MerkleBatch:
    """In-memory tree for one batch; never persisted."""
    leaves: List[str]
    root: str
    proofs: List[List[str]]

    def proof_of(self, index: int) -> List[str]:
        return self.proofs[index]


class MerkleTreeBuilder:
    """Builds sorted-pair keccak256 trees over string leaves."""

    @staticmethod
    def leaf_hash(value: str) -> bytes:
        """Double keccak256 of the ABI-encoded leaf value."""
        return Web3.keccak(Web3.keccak(abi_encode(LEAF_ENCODING, [value])))

    @staticmethod
    def hash_pair(left: bytes, right: bytes) -> bytes:
        """Hash two nodes in ascending byte order."""
        return Web3.keccak(b"".join(sorted([left, right])))

    @staticmethod
    def build_tree(leaf_hashes: Sequence[bytes]) -> List[bytes]:
        """
        Lay out a complete binary tree as an array, root at index 0.

        Leaves fill the array from the end backwards.
        """
        if not leaf_hashes:
            raise ValueError("Cannot build Merkle tree from empty list")

        tree: List[bytes] = [b""] * (2 * len(leaf_hashes) - 1)
        for i, leaf in enumerate(leaf_hashes):
            tree[len(tree) - 1 - i] = leaf
        for i in range(len(tree) - 1 - len(leaf_hashes), -1, -1):
            tree[i] = MerkleTreeBuilder.hash_pair(tree[2 * i + 1], tree[2 * i + 2])
        return tree

    @staticmethod
    def proof_for_tree_index(tree: Sequence[bytes], index: int) -> List[bytes]:
        proof = []
        while index > 0:
            sibling = index + 1 if index % 2 == 1 else index - 1
            proof.append(tree[sibling])
            index = (index - 1) // 2
        return proof

    @classmethod
    def build_batch(cls, values: Sequence[str]) -> MerkleBatch:
        """
        Build the batch tree over certificate hashes.

        Args:
            values: Combined certificate hashes in spreadsheet row order

        Returns:
            MerkleBatch with 0x-prefixed root and proofs indexed by row

        Raises:
            ValueError: If values is empty
        """
        if not values:
            raise ValueError("Cannot build Merkle tree from empty list")

        hashed = [(cls.leaf_hash(value), row) for row, value in enumerate(values)]
        # Leaves are sorted by hash before layout
        hashed.sort(key=lambda item: item[0])
        tree = cls.build_tree([leaf for leaf, _ in hashed])

        tree_index_by_row = {}
        for position, (_, row) in enumerate(hashed):
            tree_index_by_row[row] = len(tree) - 1 - position

        proofs = [
            [Web3.to_hex(node) for node in cls.proof_for_tree_index(tree, tree_index_by_row[row])]
            for row in range(len(values))
        ]
        root = Web3.to_hex(tree[0])
        logger.info(f"Built Merkle tree with {len(values)} leaves, root {root}")
        return MerkleBatch(leaves=list(values), root=root, proofs=proofs)

    @classmethod
    def verify_proof(cls, root: str, value: str, proof: Sequence[str]) -> bool:
        """Check that a leaf value and proof reproduce the given root."""
        try:
            node = cls.leaf_hash(value)
            for sibling in proof:
                node = cls.hash_pair(node, _to_bytes(sibling))
            return node == _to_bytes(root)
        except ValueError:
            return False

    @staticmethod
    def encode_proof(proof: Sequence[str]) -> str:
        """keccak256 over the concatenated raw proof nodes, 0x-prefixed."""
        return Web3.to_hex(Web3.keccak(b"".join(_to_bytes(node) for node in proof)))
