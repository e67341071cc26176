"""
merkle_distributor/blockchain/balance_tree.py

Merkle tree over (index, account, amount) entitlement leaves.

Leaf wire format (84-byte pre-image, same as Solidity
abi.encodePacked(uint256 index, address account, uint256 amount)):

    keccak256( index:uint256 big-endian (32 bytes)
             || account (20 bytes)
             || amount:uint256 big-endian (32 bytes) )

Any implementation that hashes leaves this way and combines pairs as in
merkle_tree.MerkleTree produces the same roots and proofs.
"""

import logging
from typing import Any, Dict, List, Sequence, Union

from ..config import UINT256_MAX, UINT256_SIZE
from ..identity.address import address_to_bytes, normalize_address
from .merkle_tree import HashLike, MerkleTree, coerce_hash, combine_hashes, keccak256, to_hex

logger = logging.getLogger("merkle_distributor.blockchain.balance_tree")


def _is_uint256(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= UINT256_MAX


def encode_leaf(index: int, account: Union[str, bytes], amount: int) -> bytes:
    """
    Canonical 84-byte encoding of a leaf.

    Raises:
        ValueError: If index or amount is not a uint256
        InvalidAddressError: If account is malformed
    """
    if not _is_uint256(index):
        raise ValueError(f"Index must be a uint256, got {index!r}")
    if not _is_uint256(amount):
        raise ValueError(f"Amount must be a uint256, got {amount!r}")

    return (
        index.to_bytes(UINT256_SIZE, "big")
        + address_to_bytes(account)
        + amount.to_bytes(UINT256_SIZE, "big")
    )


def hash_leaf(index: int, account: Union[str, bytes], amount: int) -> bytes:
    """Leaf digest committed to by the tree."""
    return keccak256(encode_leaf(index, account, amount))


def verify_claim(
    index: int,
    account: Union[str, bytes],
    amount: int,
    proof: Sequence[HashLike],
    root: HashLike,
) -> bool:
    """
    Check that (index, account, amount) is committed to by root.

    Pure function used by the ledger and by off-ledger tooling. Index or
    amount outside uint256 can never be in a tree and yields False.

    Raises:
        InvalidAddressError: If account is malformed
    """
    expected_root = coerce_hash(root)
    if expected_root is None:
        return False
    if not (_is_uint256(index) and _is_uint256(amount)):
        return False

    computed = hash_leaf(index, account, amount)
    for element in proof:
        sibling = coerce_hash(element)
        if sibling is None:
            return False
        computed = combine_hashes(computed, sibling)

    return computed == expected_root


class BalanceTree:
    """
    Entitlement tree; leaf i is balances[i].

    Usage:
        tree = BalanceTree([
            {"account": "0x...", "amount": 100},
            {"account": "0x...", "amount": 101},
        ])
        root = tree.get_hex_root()
        proof = tree.get_proof(0, "0x...", 100)
    """

    def __init__(self, balances: Sequence[Dict[str, Any]]):
        """
        Args:
            balances: Ordered list of {"account": address, "amount": int}

        Raises:
            EmptyTreeError: If balances is empty
        """
        self.balances: List[Dict[str, Any]] = [
            {"account": normalize_address(b["account"]), "amount": b["amount"]}
            for b in balances
        ]
        self.tree = MerkleTree([
            hash_leaf(i, b["account"], b["amount"])
            for i, b in enumerate(self.balances)
        ])

    def __len__(self) -> int:
        return len(self.balances)

    @staticmethod
    def to_node(index: int, account: Union[str, bytes], amount: int) -> bytes:
        return hash_leaf(index, account, amount)

    @staticmethod
    def verify_proof(
        index: int,
        account: Union[str, bytes],
        amount: int,
        proof: Sequence[HashLike],
        root: HashLike,
    ) -> bool:
        return verify_claim(index, account, amount, proof, root)

    def get_root(self) -> bytes:
        return self.tree.root

    def get_hex_root(self) -> str:
        return self.tree.get_hex_root()

    def get_proof(self, index: int, account: Union[str, bytes], amount: int) -> List[str]:
        """
        Hex proof for a leaf.

        Raises:
            ValueError: If the leaf is not in this tree at index
        """
        node = self.to_node(index, account, amount)
        if not 0 <= index < len(self) or self.tree.leaves[index] != node:
            raise ValueError(
                f"Leaf ({index}, {account}, {amount}) does not exist in balance tree"
            )
        return [to_hex(p) for p in self.tree.get_proof_by_index(index)]
